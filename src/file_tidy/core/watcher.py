"""Directory watching with trailing-edge debounce.

Raw notifications (from watchdog, or injected with
:meth:`DirectoryWatcher.notify`) are posted as messages onto a single
``asyncio.Queue``. One consumer task owns the pending map and the debounce
deadline, so nothing else ever mutates them:

* an event overwrites ``pending[path]`` and pushes the deadline to
  ``now + delay``;
* when the deadline passes, the pending map is drained and emitted as one
  batch;
* a stop message flushes whatever is pending, exactly once, and ends the
  loop.

Files still being written are held back by :class:`WatchdogSource` until
their size has been stable for ``stability_threshold`` seconds.
"""

import asyncio
import inspect
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from ..exceptions import WatcherError
from ..models.config import WatcherConfig
from ..models.file_record import WatchEvent, WatchEventType
from .scanner import should_ignore

logger = logging.getLogger(__name__)

BUILTIN_IGNORED_DIRS = {".git", ".svn", ".hg", "node_modules"}

BatchHandler = Callable[[List[WatchEvent]], Union[None, Awaitable[None]]]
ErrorHandler = Callable[[WatcherError], Union[None, Awaitable[None]]]


class WatcherState(Enum):
    IDLE = "idle"
    RUNNING = "running"


_EVENT = "event"
_ERROR = "error"
_STOP = "stop"


async def _maybe_await(result) -> None:
    if inspect.isawaitable(result):
        await result


class _ForwardingHandler(FileSystemEventHandler):
    """Runs on the watchdog observer thread; only hands events over."""

    def __init__(self, source: "WatchdogSource"):
        super().__init__()
        self.source = source

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.source.raw_event(WatchEventType.ADD, os.fsdecode(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.source.raw_event(WatchEventType.CHANGE, os.fsdecode(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self.source.raw_event(WatchEventType.ADD, os.fsdecode(event.dest_path))


class WatchdogSource:
    """Feed a :class:`DirectoryWatcher` from a watchdog observer.

    An event is only forwarded once the file's size has stopped changing
    for ``stability_threshold`` seconds, so half-downloaded files are not
    picked up. Files that disappear while waiting are dropped.
    """

    def __init__(self, watcher: "DirectoryWatcher", config: WatcherConfig):
        self.watcher = watcher
        self.config = config
        self.loop = asyncio.get_running_loop()
        self.observer: Optional[Observer] = None
        self._waiting: Dict[Path, asyncio.Task] = {}
        self._kinds: Dict[Path, WatchEventType] = {}
        self._closed = False

    def start(self, roots: List[Path]) -> None:
        self.observer = Observer()
        handler = _ForwardingHandler(self)
        scheduled = 0
        for root in roots:
            if not root.is_dir():
                self.watcher.report_error(WatcherError(f"Cannot watch {root}: not a directory", path=root))
                continue
            self.observer.schedule(handler, str(root), recursive=self.config.recursive)
            scheduled += 1
            logger.info(f"Watching {root}")
        if scheduled:
            self.observer.start()

    async def stop(self) -> None:
        self._closed = True
        for task in self._waiting.values():
            task.cancel()
        self._waiting.clear()
        self._kinds.clear()

        observer, self.observer = self.observer, None
        if observer is not None and observer.is_alive():
            def _shutdown():
                observer.stop()
                observer.join()
            await self.loop.run_in_executor(None, _shutdown)

    def raw_event(self, kind: WatchEventType, path: str) -> None:
        """Called from the observer thread."""
        if self._closed:
            return
        try:
            self.loop.call_soon_threadsafe(self._track, kind, Path(path))
        except RuntimeError:
            # Loop already closed during shutdown.
            pass

    def _track(self, kind: WatchEventType, path: Path) -> None:
        if self._closed or not self.watcher.accepts(path):
            return
        # A file created and then written to is still an add.
        if self._kinds.get(path) != WatchEventType.ADD:
            self._kinds[path] = kind
        if path not in self._waiting:
            self._waiting[path] = self.loop.create_task(self._await_stable(path))

    async def _await_stable(self, path: Path) -> None:
        threshold = self.config.stability_threshold
        interval = self.config.poll_interval
        try:
            last_size = None
            stable_for = 0.0
            while True:
                try:
                    size = path.stat().st_size
                except FileNotFoundError:
                    logger.debug(f"{path} vanished before it settled")
                    return
                except OSError as e:
                    self.watcher.report_error(WatcherError(f"Cannot stat {path}: {e}", path=path, cause=e))
                    return

                if size == last_size:
                    stable_for += interval
                else:
                    last_size = size
                    stable_for = 0.0

                if stable_for >= threshold:
                    break
                await asyncio.sleep(interval)

            self.watcher.notify(self._kinds.get(path, WatchEventType.ADD), path)
        finally:
            self._waiting.pop(path, None)
            self._kinds.pop(path, None)


class DirectoryWatcher:
    """Batch filesystem events for the organize pipeline.

    Args:
        on_batch: called with each emitted batch; may be a coroutine function.
        config: debounce delay, recursion, ignore patterns and stability
            settings.
        on_error: receives :class:`WatcherError` reports; may be a coroutine
            function. Errors never stop the watch loop.
        source_factory: builds the raw event source for this watcher;
            defaults to :class:`WatchdogSource`.
    """

    def __init__(self,
                 on_batch: BatchHandler,
                 config: Optional[WatcherConfig] = None,
                 on_error: Optional[ErrorHandler] = None,
                 source_factory: Optional[Callable[["DirectoryWatcher"], object]] = None):
        self.on_batch = on_batch
        self.config = config or WatcherConfig()
        self.on_error = on_error
        self.source_factory = source_factory or (lambda watcher: WatchdogSource(watcher, watcher.config))

        self.state = WatcherState.IDLE
        self.roots: List[Path] = []
        self.batches_emitted = 0
        self._pending: Dict[Path, WatchEvent] = {}
        self._queue: Optional[asyncio.Queue] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._consumer: Optional[asyncio.Task] = None
        self._source = None
        self._stopping = False
        self._stopped = asyncio.Event()
        self._stopped.set()

    @property
    def running(self) -> bool:
        return self.state == WatcherState.RUNNING

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def start(self, paths: Iterable[Union[str, Path]]) -> None:
        """Begin watching ``paths``. Does nothing if already running."""
        if self.state == WatcherState.RUNNING:
            return

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._pending = {}
        self._stopping = False
        self._stopped = asyncio.Event()
        self.roots = [Path(p).expanduser().absolute() for p in paths]
        self.state = WatcherState.RUNNING
        self._consumer = asyncio.create_task(self._run())

        self._source = self.source_factory(self)
        try:
            self._source.start(self.roots)
        except Exception as e:
            self.report_error(WatcherError(f"Failed to start watching: {e}", cause=e))

    async def stop(self) -> None:
        """Stop watching, flushing pending events, and wait until idle."""
        if self.state != WatcherState.RUNNING:
            return
        if not self._stopping:
            self._stopping = True
            self._queue.put_nowait((_STOP, None))
        await self._stopped.wait()

    async def wait_stopped(self) -> None:
        await self._stopped.wait()

    def notify(self, kind: Union[WatchEventType, str], path: Union[str, Path]) -> None:
        """Post a raw add/change notification. Safe to call from any thread."""
        event = WatchEvent(type=WatchEventType(kind), path=Path(path))
        self._post((_EVENT, event))

    def report_error(self, error: WatcherError) -> None:
        """Post an error report. Safe to call from any thread."""
        self._post((_ERROR, error))

    def accepts(self, path: Path) -> bool:
        """False for hidden paths, VCS/dependency folders and ignored names."""
        parts = self._relative_parts(path)
        for part in parts:
            if part.startswith(".") or part in BUILTIN_IGNORED_DIRS:
                return False
        return not should_ignore(path.name, self.config.ignore_patterns)

    def _relative_parts(self, path: Path):
        for root in self.roots:
            try:
                return path.relative_to(root).parts
            except ValueError:
                continue
        return (path.name,)

    def _post(self, message) -> None:
        if self.state != WatcherState.RUNNING or self._loop is None:
            return
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
        except RuntimeError:
            pass

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        deadline: Optional[float] = None

        try:
            while True:
                if deadline is not None and loop.time() >= deadline:
                    deadline = None
                    await self._flush()
                    continue

                timeout = None if deadline is None else deadline - loop.time()
                try:
                    kind, payload = await asyncio.wait_for(self._queue.get(), timeout)
                except asyncio.TimeoutError:
                    continue

                if kind == _EVENT:
                    if not self.accepts(payload.path):
                        continue
                    self._pending[payload.path] = payload
                    deadline = loop.time() + self.config.delay
                elif kind == _ERROR:
                    await self._emit_error(payload)
                elif kind == _STOP:
                    break
        finally:
            await self._shutdown()

    async def _shutdown(self) -> None:
        source, self._source = self._source, None
        if source is not None:
            try:
                await source.stop()
            except Exception as e:
                logger.warning(f"Error stopping watch source: {e}")

        await self._flush()
        self.state = WatcherState.IDLE
        self._stopped.set()
        logger.info("Watcher stopped")

    async def _flush(self) -> None:
        if not self._pending:
            return
        batch = list(self._pending.values())
        self._pending.clear()
        self.batches_emitted += 1
        logger.info(f"Emitting batch of {len(batch)} file(s)")
        try:
            await _maybe_await(self.on_batch(batch))
        except Exception as e:
            await self._emit_error(WatcherError(f"Batch handler failed: {e}", cause=e))

    async def _emit_error(self, error: WatcherError) -> None:
        logger.warning(f"Watcher error: {error}")
        if self.on_error is None:
            return
        try:
            await _maybe_await(self.on_error(error))
        except Exception as e:
            logger.error(f"Watcher error handler failed: {e}")
