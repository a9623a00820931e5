import logging
import threading
import time

import pytest

from gorgon.build import Site
from gorgon.config import SiteConfig
from gorgon.errors import ConfigurationError, WatchIOError
from gorgon.watch import WatchController, WatchState, _ChangeHandler


class FakeObserver:
    def __init__(self):
        self.scheduled = []
        self.started = False
        self.stopped = False

    def schedule(self, handler, path, recursive=False):
        self.scheduled.append(path)
        self.handler = handler

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    def join(self, timeout=None):
        pass


class DummyEvent:
    def __init__(self, event_type, src_path, dest_path="", is_directory=False):
        self.event_type = event_type
        self.src_path = src_path
        self.dest_path = dest_path
        self.is_directory = is_directory


def make_controller(tmp_path, rebuild=None, **kwargs):
    for name in ("content", "_site"):
        (tmp_path / name).mkdir(exist_ok=True)
    return WatchController(
        tmp_path,
        rebuild or (lambda changes: None),
        targets=["css/**/*.css"],
        watch_dirs=[tmp_path / "content", tmp_path / "_includes"],
        ignored=[tmp_path / "_site"],
        **kwargs,
    )


def test_matches(tmp_path):
    controller = make_controller(tmp_path)
    assert controller.matches(tmp_path / "content" / "posts" / "a.md")
    assert controller.matches(tmp_path / "_includes" / "base.html")
    assert controller.matches(tmp_path / "css" / "site.css")
    assert controller.matches(tmp_path / "css" / "vendor" / "reset.css")
    assert not controller.matches(tmp_path / "css" / "notes.txt")
    assert not controller.matches(tmp_path / "_site" / "index.html")
    assert not controller.matches(tmp_path / "README.md")
    assert not controller.matches(tmp_path.parent / "elsewhere.css")


def test_changes_during_a_rebuild_trigger_one_follow_up(tmp_path):
    calls = []

    def rebuild(changes):
        calls.append(set(changes))
        if len(calls) == 1:
            controller.notify(tmp_path / "content" / "b.md")
            controller.notify(tmp_path / "css" / "site.css")
            assert controller.state is WatchState.REBUILDING

    controller = make_controller(tmp_path, rebuild)
    assert controller.notify(tmp_path / "content" / "a.md")
    assert controller.notify(tmp_path / "content" / "a.md")
    assert not controller.notify(tmp_path / "_site" / "a" / "index.html")

    assert controller.process_once()
    assert controller.pending == {tmp_path / "content" / "b.md", tmp_path / "css" / "site.css"}
    assert controller.process_once()
    assert not controller.process_once()

    assert calls == [
        {tmp_path / "content" / "a.md"},
        {tmp_path / "content" / "b.md", tmp_path / "css" / "site.css"},
    ]
    assert controller.rebuild_count == 2


def test_failed_rebuild_is_logged_and_watching_continues(tmp_path, caplog):
    attempts = []

    def rebuild(changes):
        attempts.append(changes)
        if len(attempts) == 1:
            raise ConfigurationError("broken front matter")

    controller = make_controller(tmp_path, rebuild)
    controller.notify(tmp_path / "content" / "a.md")
    with caplog.at_level(logging.ERROR, logger="gorgon.watch"):
        assert controller.process_once()
    assert "broken front matter" in caplog.text
    assert controller.state is WatchState.WATCHING

    controller.notify(tmp_path / "content" / "a.md")
    assert controller.process_once()
    assert len(attempts) == 2


def test_unexpected_rebuild_error_keeps_the_worker_alive(tmp_path, caplog):
    calls = []
    second = threading.Event()

    def rebuild(changes):
        calls.append(changes)
        if len(calls) == 1:
            raise ValueError("boom")
        second.set()

    observer = FakeObserver()
    controller = make_controller(tmp_path, rebuild, debounce=0, observer_factory=lambda: observer)
    controller.start()
    try:
        with caplog.at_level(logging.ERROR, logger="gorgon.watch"):
            controller.notify(tmp_path / "content" / "a.md")
            deadline = time.monotonic() + 5
            while controller.rebuild_count < 1 and time.monotonic() < deadline:
                time.sleep(0.01)
        assert "boom" in caplog.text
        assert controller._worker.is_alive()

        controller.notify(tmp_path / "content" / "a.md")
        assert second.wait(timeout=5)
    finally:
        controller.stop()
    assert len(calls) == 2


def test_schedule_dirs(tmp_path):
    controller = make_controller(tmp_path)
    assert controller.schedule_dirs() == [tmp_path / "content", tmp_path / "_includes", tmp_path / "css"]


def test_start_reports_missing_directories_and_rebuilds_on_change(tmp_path, caplog):
    (tmp_path / "css").mkdir()
    rebuilt = threading.Event()
    observer = FakeObserver()
    controller = make_controller(
        tmp_path,
        lambda changes: rebuilt.set(),
        debounce=0,
        observer_factory=lambda: observer,
    )

    with caplog.at_level(logging.WARNING, logger="gorgon.watch"):
        controller.start()
    try:
        assert observer.started
        assert observer.scheduled == [str(tmp_path / "content"), str(tmp_path / "css")]
        assert len(controller.errors) == 1
        assert isinstance(controller.errors[0], WatchIOError)
        assert controller.errors[0].target == str(tmp_path / "_includes")
        assert "_includes" in caplog.text
        assert controller.state is WatchState.WATCHING

        observer.handler.on_any_event(DummyEvent("modified", str(tmp_path / "content" / "a.md")))
        assert rebuilt.wait(timeout=5)
    finally:
        controller.stop()

    assert controller.state is WatchState.STOPPED
    assert observer.stopped
    assert not controller.notify(tmp_path / "content" / "a.md")
    with pytest.raises(RuntimeError):
        controller.start()


def test_change_handler_filters_events(tmp_path):
    controller = make_controller(tmp_path)
    handler = _ChangeHandler(controller)
    content = tmp_path / "content"

    handler.on_any_event(DummyEvent("modified", str(content), is_directory=True))
    handler.on_any_event(DummyEvent("opened", str(content / "a.md")))
    handler.on_any_event(DummyEvent("closed_no_write", str(content / "a.md")))
    assert controller.pending == frozenset()

    handler.on_any_event(DummyEvent("moved", str(content / "old.md"), str(content / "new.md")))
    assert controller.pending == {content / "old.md", content / "new.md"}


def test_for_site(tmp_path):
    config = SiteConfig(
        project_root=tmp_path,
        input_dir=tmp_path / "content",
        includes_dir=tmp_path / "_includes",
        data_dir=tmp_path / "_data",
        output_dir=tmp_path / "_site",
        watch=["css/**/*.css"],
        workers=1,
    )
    site = Site(config)
    site.add_watch_target("css/**/*.css")
    (tmp_path / "content").mkdir()
    (tmp_path / "content" / "index.md").write_text("Home", encoding="utf-8")

    controller = WatchController.for_site(site)
    assert controller.targets == ["css/**/*.css"]
    assert controller.watch_dirs == [tmp_path / "content", tmp_path / "_includes", tmp_path / "_data"]
    assert not controller.matches(tmp_path / "_site" / "index.html")

    controller.notify(tmp_path / "content" / "index.md")
    controller.process_once()
    assert (tmp_path / "_site" / "index.html").read_text(encoding="utf-8") == "<p>Home</p>\n"
