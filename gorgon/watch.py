"""Watch mode for Gorgon.

The controller listens to filesystem events through watchdog and re-runs the
build whenever a relevant file changes. Rebuilds are serialized on a single
worker thread; changes that arrive while a rebuild is running are collected
into one pending set and trigger exactly one follow-up rebuild.

States:
    IDLE -> WATCHING -> REBUILDING -> WATCHING ... -> STOPPED

Every rebuild is a full build pass.

Key classes:
- WatchController: Filters change events and serializes rebuilds.
- _ChangeHandler: watchdog event handler feeding the controller.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from collections.abc import Callable, Iterable
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .errors import GorgonError, WatchIOError
from .utils import glob_base, glob_match

if TYPE_CHECKING:
    from .build import Site

logger = logging.getLogger(__name__)

# Access events (opened, closed_no_write) fire while the build reads sources.
_RELEVANT_EVENTS = {"created", "modified", "deleted", "moved", "closed"}


class WatchState(Enum):
    IDLE = "idle"
    WATCHING = "watching"
    REBUILDING = "rebuilding"
    STOPPED = "stopped"


def _absolute(path: str | os.PathLike) -> Path:
    return Path(os.path.abspath(os.fsdecode(path)))


class WatchController:
    """Coalesces change events into serialized rebuilds.

    Attributes:
        project_root: Directory watch globs are relative to.
        rebuild: Called with the set of changed paths for every rebuild.
        targets: Watch globs relative to the project root.
        watch_dirs: Directories whose whole contents are watched.
        ignored: Directories whose changes are never relevant (the output).
        debounce: Seconds to wait for a burst of events to settle.
        state: Current WatchState.
        rebuild_count: Number of rebuilds run so far.
        errors: Watch targets that could not be scheduled.
    """

    def __init__(
        self,
        project_root: Path,
        rebuild: Callable[[set[Path]], Any],
        targets: Iterable[str] = (),
        watch_dirs: Iterable[Path] = (),
        ignored: Iterable[Path] = (),
        debounce: float = 0.1,
        observer_factory: Callable[[], Any] = Observer,
    ):
        self.project_root = _absolute(project_root)
        self.rebuild = rebuild
        self.targets = list(dict.fromkeys(targets))
        self.watch_dirs = [_absolute(d) for d in watch_dirs]
        self.ignored = [_absolute(d) for d in ignored]
        self.debounce = debounce
        self.state = WatchState.IDLE
        self.rebuild_count = 0
        self.errors: list[WatchIOError] = []
        self._observer_factory = observer_factory
        self._observer: Any = None
        self._worker: threading.Thread | None = None
        self._pending: set[Path] = set()
        self._cond = threading.Condition()

    @classmethod
    def for_site(cls, site: Site, include_drafts: bool = False, **kwargs: Any) -> WatchController:
        """Create a controller that rebuilds `site` on every relevant change."""
        config = site.config

        def rebuild(changes: set[Path]) -> None:
            logger.info("Change detected (%d files); rebuilding...", len(changes))
            result = site.build(include_drafts=include_drafts)
            for error in result.errors:
                logger.error("%s", error)

        return cls(
            config.project_root,
            rebuild,
            targets=site.watch_targets,
            watch_dirs=(config.input_dir, config.includes_dir, config.data_dir),
            ignored=(config.output_dir,),
            **kwargs,
        )

    def matches(self, path: str | os.PathLike) -> bool:
        """Whether a change to `path` should trigger a rebuild."""
        candidate = _absolute(path)
        if any(candidate == d or candidate.is_relative_to(d) for d in self.ignored):
            return False
        if any(candidate.is_relative_to(d) for d in self.watch_dirs):
            return True
        try:
            rel = candidate.relative_to(self.project_root).as_posix()
        except ValueError:
            return False
        return any(glob_match(rel, target) for target in self.targets)

    def notify(self, path: str | os.PathLike) -> bool:
        """Record a changed path.

        Returns:
            True if the path was accepted into the pending set.
        """
        if not self.matches(path):
            return False
        with self._cond:
            if self.state is WatchState.STOPPED:
                return False
            self._pending.add(_absolute(path))
            self._cond.notify_all()
        return True

    @property
    def pending(self) -> frozenset[Path]:
        with self._cond:
            return frozenset(self._pending)

    def process_once(self) -> bool:
        """Run one rebuild for everything pending.

        Paths notified while the rebuild runs stay pending for the next call.

        Returns:
            True if a rebuild ran.
        """
        with self._cond:
            if not self._pending or self.state is WatchState.STOPPED:
                return False
            changes, self._pending = self._pending, set()
            self.state = WatchState.REBUILDING
        try:
            self.rebuild(changes)
        except GorgonError as exc:
            logger.error("Rebuild failed: %s", exc)
        except Exception:
            logger.exception("Rebuild crashed")
        finally:
            with self._cond:
                self.rebuild_count += 1
                if self.state is WatchState.REBUILDING:
                    self.state = WatchState.WATCHING
        return True

    def schedule_dirs(self) -> list[Path]:
        """Directories handed to the observer, without duplicates."""
        dirs = list(self.watch_dirs)
        dirs.extend(self.project_root / glob_base(target) for target in self.targets)
        return list(dict.fromkeys(_absolute(d) for d in dirs))

    def start(self) -> None:
        """Schedule the observer and start the rebuild worker.

        A directory that cannot be watched is logged as a WatchIOError and
        skipped; the remaining ones are still watched.
        """
        if self.state is not WatchState.IDLE:
            raise RuntimeError(f"Cannot start a controller in state {self.state.value}")
        observer = self._observer_factory()
        handler = _ChangeHandler(self)
        for directory in self.schedule_dirs():
            try:
                if not directory.is_dir():
                    raise WatchIOError(str(directory), "directory does not exist")
                observer.schedule(handler, str(directory), recursive=True)
            except OSError as exc:
                self._report(WatchIOError(str(directory), str(exc)))
            except WatchIOError as exc:
                self._report(exc)
        observer.start()
        self._observer = observer
        self.state = WatchState.WATCHING
        self._worker = threading.Thread(target=self._run, name="gorgon-rebuild", daemon=True)
        self._worker.start()
        logger.info("Watching %d directories", len(self.schedule_dirs()) - len(self.errors))

    def _report(self, error: WatchIOError) -> None:
        logger.warning("%s", error)
        self.errors.append(error)

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._pending and self.state is not WatchState.STOPPED:
                    self._cond.wait()
                if self.state is WatchState.STOPPED:
                    return
            if self.debounce:
                time.sleep(self.debounce)
            self.process_once()

    def stop(self) -> None:
        with self._cond:
            self.state = WatchState.STOPPED
            self._cond.notify_all()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
        if self._worker is not None and self._worker is not threading.current_thread():
            self._worker.join()

    def run_forever(self) -> None:  # pragma: no cover - integration path
        self.start()
        try:
            while self.state is not WatchState.STOPPED:
                time.sleep(1)
        except KeyboardInterrupt:
            self.stop()


class _ChangeHandler(FileSystemEventHandler):
    def __init__(self, controller: WatchController):
        super().__init__()
        self.controller = controller

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory or event.event_type not in _RELEVANT_EVENTS:
            return
        self.controller.notify(event.src_path)
        dest = getattr(event, "dest_path", "")
        if dest:
            self.controller.notify(dest)
