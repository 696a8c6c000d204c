"""Tests for the organize pipeline and categorizer response handling."""

import json
from datetime import datetime
from pathlib import Path

import pytest

from file_tidy.core.history import HistoryLog
from file_tidy.core.pipeline import (
    OrganizeContext,
    chunked,
    extract_payload,
    parse_categorization,
)
from file_tidy.models.config import Config
from file_tidy.models.file_record import FileRecord, WatchEvent, WatchEventType
from file_tidy.models.move import MoveStatus


def make_record(path, size=1):
    path = Path(path)
    now = datetime.now()
    return FileRecord(path=path, name=path.name, extension=path.suffix[1:],
                      size=size, modified_at=now, created_at=now)


class TestChunked:

    def test_order_and_sizes(self):
        assert list(chunked([1, 2, 3, 4, 5], 2)) == [[1, 2], [3, 4], [5]]

    def test_empty(self):
        assert list(chunked([], 3)) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            list(chunked([1], 0))


class TestExtractPayload:

    def test_dict_passthrough(self):
        assert extract_payload({"proposals": []}) == {"proposals": []}

    def test_json_wrapped_in_prose(self):
        text = 'Sure! Here is the plan:\n{"proposals": [], "strategy": "by type"}\nHope it helps.'
        assert extract_payload(text) == {"proposals": [], "strategy": "by type"}

    def test_bytes(self):
        assert extract_payload(b'{"a": 1}') == {"a": 1}

    @pytest.mark.parametrize("response", ["no json here", "{broken", "[1, 2]", None, 42])
    def test_garbage(self, response):
        assert extract_payload(response) is None


class TestParseCategorization:
    """Validation of raw proposals."""

    @pytest.fixture
    def files(self):
        return [make_record("/in/a.pdf"), make_record("/in/b.jpg"), make_record("/in/c.zip")]

    def test_valid_proposals(self, files):
        response = {
            "proposals": [
                {"file": "a.pdf", "destination": "Documents/Work",
                 "category": {"name": "Documents", "confidence": 0.9}, "reasoning": "invoice"},
                {"source_path": "/in/b.jpg", "destination": "Pictures"},
            ],
            "strategy": "by type",
        }

        plan = parse_categorization(response, files, Path("/out"))

        assert [p.destination_path for p in plan.proposals] == [
            Path("/out/Documents/Work/a.pdf"), Path("/out/Pictures/b.jpg")]
        assert plan.proposals[0].category == "Documents"
        assert plan.proposals[0].confidence == 0.9
        assert plan.proposals[0].reasoning == "invoice"
        assert plan.proposals[1].confidence == 0.5
        assert [r.name for r in plan.uncategorized] == ["c.zip"]
        assert plan.strategy == "by type"

    def test_unknown_file_rejected(self, files):
        plan = parse_categorization(
            {"proposals": [{"file": "ghost.txt", "destination": "X"}]}, files, Path("/out"))

        assert plan.proposals == []
        assert len(plan.rejected) == 1
        assert len(plan.uncategorized) == 3

    def test_escaping_destination_rejected(self, files):
        plan = parse_categorization({"proposals": [
            {"file": "a.pdf", "destination": "../../etc"},
            {"file": "b.jpg", "destination": "/abs/path"},
        ]}, files, Path("/out"))

        assert plan.proposals == []
        assert len(plan.rejected) == 2

    def test_duplicate_proposal_rejected(self, files):
        plan = parse_categorization({"proposals": [
            {"file": "a.pdf", "destination": "One"},
            {"file": "a.pdf", "destination": "Two"},
        ]}, files, Path("/out"))

        assert [p.destination_path.parent.name for p in plan.proposals] == ["One"]
        assert len(plan.rejected) == 1

    def test_confidence_clamped(self, files):
        plan = parse_categorization({"proposals": [
            {"file": "a.pdf", "destination": "A", "confidence": 7},
            {"file": "b.jpg", "destination": "B", "confidence": -1},
            {"file": "c.zip", "destination": "C", "confidence": "high"},
        ]}, files, Path("/out"))

        assert [p.confidence for p in plan.proposals] == [1.0, 0.0, 0.5]

    def test_garbled_response(self, files):
        plan = parse_categorization("I could not decide, sorry", files, Path("/out"))

        assert plan.proposals == []
        assert plan.uncategorized == files
        assert plan.strategy == "Failed to parse categorizer response"

    def test_empty_destination_is_target_root(self, files):
        plan = parse_categorization(
            {"proposals": [{"file": "a.pdf", "destination": ""}]}, files, Path("/out"))
        assert plan.proposals[0].destination_path == Path("/out/a.pdf")


@pytest.fixture
def workspace(tmp_path):
    source = tmp_path / "Downloads"
    target = tmp_path / "Organized"
    source.mkdir()
    target.mkdir()
    (target / "Documents").mkdir()
    (target / "Documents" / "old.pdf").write_text("old")
    for name in ["a.pdf", "b.jpg", "c.zip", "d.txt", "e.pdf"]:
        (source / name).write_text(name)

    config = Config(source_directory=source, target_directory=target,
                    history_path=tmp_path / "history.json")
    return config, source, target


def by_extension(files, target_root, existing):
    folders = {"pdf": "Documents", "jpg": "Pictures"}
    return json.dumps({
        "proposals": [
            {"file": record.name, "destination": folders[record.extension]}
            for record in files if record.extension in folders
        ],
        "strategy": f"existing: {','.join(existing)}",
    })


class TestOrganize:
    """End-to-end organizing runs."""

    @pytest.mark.asyncio
    async def test_organize_moves_and_records(self, workspace):
        config, source, target = workspace
        async with OrganizeContext(config) as context:
            report = await context.organize(source, target, by_extension)

        assert report.summary.completed == 3
        assert (target / "Documents" / "a.pdf").exists()
        assert (target / "Documents" / "e.pdf").exists()
        assert (target / "Pictures" / "b.jpg").exists()
        assert {r.name for r in report.uncategorized} == {"c.zip", "d.txt"}
        assert report.persisted

        entries = HistoryLog(config.history_path).read_all()
        assert len(entries) == 1
        assert entries[0].id == report.entry.id
        assert len(entries[0].moves) == 3

    @pytest.mark.asyncio
    async def test_categorizer_sees_existing_folders(self, workspace):
        config, source, target = workspace
        seen = []

        async def categorizer(files, target_root, existing):
            seen.append(existing)
            return {"proposals": []}

        async with OrganizeContext(config) as context:
            await context.organize(source, target, categorizer)

        assert seen == [["Documents"]]

    @pytest.mark.asyncio
    async def test_no_moves_no_history(self, workspace):
        config, source, target = workspace
        async with OrganizeContext(config) as context:
            report = await context.organize(source, target, lambda *args: "nothing useful")

        assert report.summary.total == 0
        assert report.entry is None
        assert not config.history_path.exists()
        assert len(report.uncategorized) == 5

    @pytest.mark.asyncio
    async def test_chunking(self, workspace):
        config, source, target = workspace
        config.chunk_size = 2
        sizes = []

        def categorizer(files, target_root, existing):
            sizes.append(len(files))
            return {"proposals": []}

        async with OrganizeContext(config) as context:
            await context.organize(source, target, categorizer)

        assert sizes == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_failing_chunk_left_uncategorized(self, workspace):
        config, source, target = workspace
        config.chunk_size = 3
        calls = []

        def categorizer(files, target_root, existing):
            calls.append(files)
            if len(calls) == 1:
                raise ConnectionError("service unavailable")
            return by_extension(files, target_root, existing)

        async with OrganizeContext(config) as context:
            report = await context.organize(source, target, categorizer)

        # Sorted scan: first chunk is a.pdf, b.jpg, c.zip.
        assert {r.name for r in report.uncategorized} == {"a.pdf", "b.jpg", "c.zip", "d.txt"}
        assert report.summary.completed == 1
        assert (source / "a.pdf").exists()

    @pytest.mark.asyncio
    async def test_conflicts_flagged_and_renamed(self, workspace):
        config, source, target = workspace
        (target / "Documents" / "a.pdf").write_text("already here")

        async with OrganizeContext(config) as context:
            files = await context.scanner.scan(source)
            plan = await context.plan(files, target, by_extension)
            flagged = {p.source_path.name: p.conflict_exists for p in plan.proposals}
            report = await context.apply(plan, source, target)

        assert flagged == {"a.pdf": True, "b.jpg": False, "e.pdf": False}
        assert (target / "Documents" / "a (1).pdf").read_text() == "a.pdf"
        assert all(r.status == MoveStatus.COMPLETED for r in report.results)

    @pytest.mark.asyncio
    async def test_find_duplicates(self, workspace):
        config, source, target = workspace
        (source / "copy.txt").write_text("d.txt")

        async with OrganizeContext(config) as context:
            report = await context.organize(source, target, lambda *args: {},
                                            find_duplicates=True)

        assert len(report.duplicates) == 1
        assert {r.name for r in report.duplicates[0].files} == {"copy.txt", "d.txt"}


class TestWatchBatch:
    """Organizing the files named by a watcher batch."""

    @pytest.mark.asyncio
    async def test_handle_watch_batch(self, workspace):
        config, source, target = workspace
        events = [WatchEvent(WatchEventType.ADD, source / "a.pdf"),
                  WatchEvent(WatchEventType.CHANGE, source / "b.jpg"),
                  WatchEvent(WatchEventType.ADD, source / "vanished.pdf")]

        async with OrganizeContext(config) as context:
            report = await context.handle_watch_batch(events, target, by_extension)

        assert report.summary.completed == 2
        assert report.entry.source_root == source.absolute()
        assert (target / "Pictures" / "b.jpg").exists()
        assert (source / "c.zip").exists()

    @pytest.mark.asyncio
    async def test_empty_batch(self, workspace):
        config, source, target = workspace
        async with OrganizeContext(config) as context:
            report = await context.handle_watch_batch(
                [WatchEvent(WatchEventType.ADD, source / "nope")], target, by_extension)

        assert report.results == []
        assert not config.history_path.exists()
