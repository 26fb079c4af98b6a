from __future__ import annotations

import asyncio
import logging

import pytest

from devspawn.watcher import FileWatcher


async def _next_batch(watcher: FileWatcher, target, timeout: float = 5.0):
    changes = watcher.changes()
    pending = asyncio.ensure_future(changes.__anext__())

    async def _touch_until_reported() -> None:
        count = 0
        while not pending.done():
            count += 1
            target.write_text(f"revision {count}")
            await asyncio.sleep(0.05)

    try:
        await asyncio.wait_for(_touch_until_reported(), timeout=timeout)
        return pending.result()
    finally:
        pending.cancel()
        await asyncio.gather(pending, return_exceptions=True)
        await changes.aclose()


def test_relative_paths_resolve_against_base(tmp_path):
    (tmp_path / "src").mkdir()
    watcher = FileWatcher(["src", "Dockerfile"], base=tmp_path)

    assert watcher.paths == [(tmp_path / "src").resolve(), (tmp_path / "Dockerfile").resolve()]


def test_missing_paths_are_skipped_with_warning(tmp_path, caplog):
    (tmp_path / "src").mkdir()
    watcher = FileWatcher(["src", "later.txt"], base=tmp_path)

    with caplog.at_level(logging.WARNING, logger="devspawn.watcher"):
        existing = watcher.existing_paths()

    assert existing == [(tmp_path / "src").resolve()]
    assert "later.txt" in caplog.text


@pytest.mark.asyncio
async def test_changes_ends_when_nothing_exists(tmp_path, caplog):
    watcher = FileWatcher([tmp_path / "missing"])

    with caplog.at_level(logging.WARNING, logger="devspawn.watcher"):
        batches = [batch async for batch in watcher.changes()]

    assert batches == []
    assert "No existing paths to watch" in caplog.text


@pytest.mark.asyncio
async def test_changes_yields_changed_paths(tmp_path):
    watcher = FileWatcher([tmp_path], debounce_ms=50, step_ms=10)
    target = tmp_path / "one.txt"

    batch = await _next_batch(watcher, target)

    assert target.resolve() in batch
    assert batch == sorted(batch)


@pytest.mark.asyncio
async def test_single_file_can_be_watched(tmp_path):
    target = tmp_path / "Dockerfile"
    target.write_text("FROM scratch\n")
    watcher = FileWatcher([target], debounce_ms=50, step_ms=10)

    batch = await _next_batch(watcher, target)

    assert batch == [target.resolve()]
