"""Tests for the move executor."""

import errno
import os
from pathlib import Path
from unittest.mock import patch

import pytest

from file_tidy.core.fileops import PARTIAL_SUFFIX, rename_in_place
from file_tidy.core.history import HistoryLog
from file_tidy.core.mover import MoveExecutor
from file_tidy.models.move import ConflictStrategy, MoveProposal, MoveStatus


def exdev(source, destination):
    raise OSError(errno.EXDEV, "Invalid cross-device link")


@pytest.fixture
def workspace(tmp_path):
    source = tmp_path / "inbox"
    target = tmp_path / "sorted"
    source.mkdir()
    target.mkdir()
    return source, target


@pytest.fixture
def entry(tmp_path):
    return HistoryLog(tmp_path / "history.json").create_entry(tmp_path / "inbox", tmp_path / "sorted")


@pytest.fixture
def executor():
    mover = MoveExecutor(max_workers=2)
    yield mover
    mover.close()


class TestExecute:
    """Single moves."""

    @pytest.mark.asyncio
    async def test_basic_move(self, executor, workspace, entry):
        source, target = workspace
        (source / "a.pdf").write_text("pdf")
        destination = target / "Documents" / "Work" / "a.pdf"

        result = await executor.execute(MoveProposal(source / "a.pdf", destination), entry)

        assert result.status == MoveStatus.COMPLETED
        assert result.destination == destination
        assert destination.read_text() == "pdf"
        assert not (source / "a.pdf").exists()
        assert [(m.source, m.destination) for m in entry.moves] == [(source / "a.pdf", destination)]

    @pytest.mark.asyncio
    async def test_rename_on_conflict(self, executor, workspace, entry):
        source, target = workspace
        (source / "a.pdf").write_text("new")
        (target / "a.pdf").write_text("old")

        result = await executor.execute(MoveProposal(source / "a.pdf", target / "a.pdf"), entry)

        assert result.status == MoveStatus.COMPLETED
        assert result.destination == target / "a (1).pdf"
        assert (target / "a.pdf").read_text() == "old"
        assert (target / "a (1).pdf").read_text() == "new"

    @pytest.mark.asyncio
    async def test_skip_on_conflict(self, workspace, entry):
        source, target = workspace
        (source / "a.pdf").write_text("new")
        (target / "a.pdf").write_text("old")

        async with MoveExecutor(strategy=ConflictStrategy.SKIP) as mover:
            result = await mover.execute(MoveProposal(source / "a.pdf", target / "a.pdf"), entry)

        assert result.status == MoveStatus.SKIPPED
        assert (source / "a.pdf").exists()
        assert (target / "a.pdf").read_text() == "old"
        assert entry.moves == []

    @pytest.mark.asyncio
    async def test_overwrite_with_backup(self, workspace, entry):
        source, target = workspace
        (source / "a.pdf").write_text("new")
        (target / "a.pdf").write_text("old")

        async with MoveExecutor(strategy=ConflictStrategy.OVERWRITE, backup=True) as mover:
            result = await mover.execute(MoveProposal(source / "a.pdf", target / "a.pdf"), entry)

        assert result.status == MoveStatus.COMPLETED
        assert result.backup_path == target / "a.pdf.backup"
        assert (target / "a.pdf").read_text() == "new"
        assert result.backup_path.read_text() == "old"

    @pytest.mark.asyncio
    async def test_conflict_appearing_after_planning(self, executor, workspace, entry):
        source, target = workspace
        (source / "a.pdf").write_text("new")
        proposal = MoveProposal(source / "a.pdf", target / "a.pdf", conflict_exists=False)
        (target / "a.pdf").write_text("arrived later")

        result = await executor.execute(proposal, entry)

        assert result.destination == target / "a (1).pdf"
        assert (target / "a.pdf").read_text() == "arrived later"

    @pytest.mark.asyncio
    async def test_missing_source_fails(self, executor, workspace, entry):
        source, target = workspace

        result = await executor.execute(MoveProposal(source / "gone.pdf", target / "gone.pdf"), entry)

        assert result.status == MoveStatus.FAILED
        assert result.error
        assert entry.moves == []


class TestCrossDevice:
    """Copy-then-delete fallback when rename crosses filesystems."""

    @pytest.mark.asyncio
    async def test_exdev_falls_back_to_copy(self, executor, workspace, entry):
        source, target = workspace
        (source / "movie.mkv").write_bytes(b"x" * 4096)

        with patch("file_tidy.core.fileops.rename_in_place", side_effect=exdev):
            result = await executor.execute(
                MoveProposal(source / "movie.mkv", target / "movie.mkv"), entry)

        assert result.status == MoveStatus.COMPLETED
        assert (target / "movie.mkv").read_bytes() == b"x" * 4096
        assert not (source / "movie.mkv").exists()
        assert not (target / f".movie.mkv{PARTIAL_SUFFIX}").exists()
        assert len(entry.moves) == 1

    @pytest.mark.asyncio
    async def test_copy_failure_leaves_source_intact(self, executor, workspace, entry):
        source, target = workspace
        (source / "movie.mkv").write_bytes(b"data")

        def broken_copy(src, dst):
            Path(dst).write_bytes(b"da")
            raise OSError(errno.ENOSPC, "No space left on device")

        with patch("file_tidy.core.fileops.rename_in_place", side_effect=exdev), \
                patch("file_tidy.core.fileops.shutil.copy2", side_effect=broken_copy):
            result = await executor.execute(
                MoveProposal(source / "movie.mkv", target / "movie.mkv"), entry)

        assert result.status == MoveStatus.FAILED
        assert (source / "movie.mkv").read_bytes() == b"data"
        assert list(target.iterdir()) == []
        assert entry.moves == []

    @pytest.mark.asyncio
    async def test_checksum_mismatch_fails(self, executor, workspace, entry):
        source, target = workspace
        (source / "movie.mkv").write_bytes(b"data")

        with patch("file_tidy.core.fileops.rename_in_place", side_effect=exdev), \
                patch("file_tidy.core.fileops.compute_file_hash", side_effect=["aaa", "bbb"]):
            result = await executor.execute(
                MoveProposal(source / "movie.mkv", target / "movie.mkv"), entry)

        assert result.status == MoveStatus.FAILED
        assert "Checksum mismatch" in result.error
        assert (source / "movie.mkv").exists()
        assert list(target.iterdir()) == []


class TestExecuteBatch:
    """Batches run in order and isolate failures."""

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_batch(self, executor, workspace, entry):
        source, target = workspace
        names = ["1.txt", "2.txt", "3.txt", "4.txt", "5.txt"]
        for name in names:
            (source / name).write_text(name)
        proposals = [MoveProposal(source / n, target / n) for n in names]

        def flaky(src, dst):
            if Path(src).name == "3.txt":
                raise PermissionError(errno.EACCES, "Permission denied")
            rename_in_place(src, dst)

        with patch("file_tidy.core.fileops.rename_in_place", side_effect=flaky):
            results = await executor.execute_batch(proposals, entry)

        assert [r.status for r in results] == [
            MoveStatus.COMPLETED, MoveStatus.COMPLETED, MoveStatus.FAILED,
            MoveStatus.COMPLETED, MoveStatus.COMPLETED,
        ]
        assert [m.source.name for m in entry.moves] == ["1.txt", "2.txt", "4.txt", "5.txt"]
        assert (source / "3.txt").exists()

        summary = MoveExecutor.summarize(results)
        assert (summary.completed, summary.failed, summary.skipped) == (4, 1, 0)

    @pytest.mark.asyncio
    async def test_same_destination_twice(self, executor, workspace, entry):
        source, target = workspace
        (source / "one").mkdir()
        (source / "two").mkdir()
        (source / "one" / "notes.txt").write_text("first")
        (source / "two" / "notes.txt").write_text("second")

        results = await executor.execute_batch([
            MoveProposal(source / "one" / "notes.txt", target / "notes.txt"),
            MoveProposal(source / "two" / "notes.txt", target / "notes.txt"),
        ], entry)

        assert [r.destination.name for r in results] == ["notes.txt", "notes (1).txt"]
        assert (target / "notes.txt").read_text() == "first"
        assert (target / "notes (1).txt").read_text() == "second"
        assert len({m.destination for m in entry.moves}) == 2

    @pytest.mark.asyncio
    async def test_unwritable_destination_parent(self, executor, workspace, entry):
        source, target = workspace
        (source / "a.txt").write_text("a")
        (target / "blocker").write_text("not a directory")

        results = await executor.execute_batch(
            [MoveProposal(source / "a.txt", target / "blocker" / "a.txt")], entry)

        assert results[0].status == MoveStatus.FAILED
        assert (source / "a.txt").exists()


class TestFailureSafety:
    """Per-file errors become failed results and never lose data."""

    @pytest.mark.asyncio
    async def test_unresolvable_destination_does_not_stop_batch(self, executor, workspace, entry):
        source, target = workspace
        long_name = "x" * 250 + ".txt"
        for name in ["a.txt", long_name, "c.txt"]:
            (source / name).write_text(name)
        (target / long_name).write_text("taken")

        results = await executor.execute_batch(
            [MoveProposal(source / n, target / n) for n in ["a.txt", long_name, "c.txt"]], entry)

        assert [r.status for r in results] == [
            MoveStatus.COMPLETED, MoveStatus.FAILED, MoveStatus.COMPLETED]
        assert (source / long_name).exists()
        assert (target / long_name).read_text() == "taken"
        assert [m.source.name for m in entry.moves] == ["a.txt", "c.txt"]

    @pytest.mark.asyncio
    async def test_resolver_error_reported_as_failure(self, executor, workspace, entry):
        source, target = workspace
        for name in ["1.txt", "2.txt", "3.txt"]:
            (source / name).write_text(name)
        real_resolve = executor.resolver.resolve

        async def flaky(destination, strategy):
            if destination.name == "2.txt":
                raise PermissionError(errno.EACCES, "Permission denied")
            return await real_resolve(destination, strategy)

        with patch.object(executor.resolver, "resolve", side_effect=flaky):
            results = await executor.execute_batch(
                [MoveProposal(source / n, target / n) for n in ["1.txt", "2.txt", "3.txt"]], entry)

        assert [r.status for r in results] == [
            MoveStatus.COMPLETED, MoveStatus.FAILED, MoveStatus.COMPLETED]
        assert "Permission denied" in results[1].error

    @pytest.mark.asyncio
    async def test_cross_device_overwrite_keeps_existing_file_on_failure(self, workspace, entry):
        source, target = workspace
        (source / "a.txt").write_text("new")
        (target / "a.txt").write_text("precious")
        real_unlink = os.unlink

        def unlink(path, *args, **kwargs):
            if Path(path) == source / "a.txt":
                raise PermissionError(errno.EACCES, "Permission denied")
            return real_unlink(path, *args, **kwargs)

        async with MoveExecutor(strategy=ConflictStrategy.OVERWRITE) as mover:
            with patch("file_tidy.core.fileops.rename_in_place", side_effect=exdev), \
                    patch("file_tidy.core.fileops.os.unlink", side_effect=unlink):
                result = await mover.execute(MoveProposal(source / "a.txt", target / "a.txt"), entry)

        assert result.status == MoveStatus.FAILED
        assert (target / "a.txt").read_text() == "precious"
        assert (source / "a.txt").read_text() == "new"
        assert sorted(p.name for p in target.iterdir()) == ["a.txt"]
        assert entry.moves == []

    @pytest.mark.asyncio
    async def test_cross_device_overwrite(self, workspace, entry):
        source, target = workspace
        (source / "a.txt").write_text("new")
        (target / "a.txt").write_text("old")

        async with MoveExecutor(strategy=ConflictStrategy.OVERWRITE) as mover:
            with patch("file_tidy.core.fileops.rename_in_place", side_effect=exdev):
                result = await mover.execute(MoveProposal(source / "a.txt", target / "a.txt"), entry)

        assert result.status == MoveStatus.COMPLETED
        assert (target / "a.txt").read_text() == "new"
        assert not (source / "a.txt").exists()
        assert sorted(p.name for p in target.iterdir()) == ["a.txt"]
