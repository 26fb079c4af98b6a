"""File watcher used to trigger rebuilds."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from pathlib import Path

import watchfiles

logger = logging.getLogger("devspawn.watcher")


class FileWatcher:
    """Yields batches of changed paths under a set of files or directories."""

    def __init__(
        self,
        paths: Iterable[str | Path],
        *,
        debounce_ms: int = 1600,
        step_ms: int = 50,
        force_polling: bool | None = None,
        base: Path | None = None,
    ) -> None:
        base = base or Path.cwd()
        self.paths = [(base / Path(path)).resolve() for path in paths]
        self.debounce_ms = debounce_ms
        self.step_ms = step_ms
        self.force_polling = force_polling

    def existing_paths(self) -> list[Path]:
        missing = [path for path in self.paths if not path.exists()]
        if missing:
            logger.warning(
                "Not watching missing paths: %s",
                ", ".join(str(path) for path in missing),
                extra={"paths": [str(path) for path in missing]},
            )
        return [path for path in self.paths if path.exists()]

    async def changes(self) -> AsyncIterator[list[Path]]:
        """Yield sorted batches of added, modified or deleted paths."""
        watch_paths = self.existing_paths()
        if not watch_paths:
            logger.warning("No existing paths to watch")
            return

        logger.debug("Watching for changes", extra={"paths": [str(path) for path in watch_paths]})
        async for changes in watchfiles.awatch(
            *watch_paths,
            debounce=self.debounce_ms,
            step=self.step_ms,
            force_polling=self.force_polling,
        ):
            yield sorted({Path(changed_path) for _change, changed_path in changes})


__all__ = ["FileWatcher"]
