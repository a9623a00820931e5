import os
from pathlib import Path

import pytest

from gorgon.artifacts import ArtifactSet, OutputArtifact, copy_atomic, normalize_output_path, write_atomic
from gorgon.errors import ArtifactCollisionError, DuplicateOutputPathError


def test_output_path_is_normalized():
    artifact = OutputArtifact(path="/posts/a/index.html", content=b"x")
    assert artifact.path == "posts/a/index.html"
    assert artifact.is_html
    assert normalize_output_path("a\\b.txt") == "a/b.txt"


@pytest.mark.parametrize("path", ["", "/", "../escape.html", "a/../../b"])
def test_invalid_output_paths(path):
    with pytest.raises(ValueError):
        normalize_output_path(path)


def test_duplicate_paths_collide():
    artifacts = ArtifactSet()
    artifacts.add(OutputArtifact("index.html", b"a", source=Path("index.md")))
    with pytest.raises(ArtifactCollisionError) as excinfo:
        artifacts.add(OutputArtifact("/index.html", b"b", source=Path("home.md")))
    assert excinfo.value.path == "index.html"
    assert excinfo.value.sources == (Path("index.md"), Path("home.md"))
    assert DuplicateOutputPathError is ArtifactCollisionError


def test_reserved_paths_collide_with_artifacts():
    artifacts = ArtifactSet()
    artifacts.reserve("css/site.css", Path("css/site.css"))
    with pytest.raises(ArtifactCollisionError):
        artifacts.add(OutputArtifact("css/site.css", b"body{}"))
    assert "css/site.css" in artifacts
    assert artifacts.paths() == {"css/site.css"}
    assert len(artifacts) == 0


def test_replace_requires_existing_path():
    artifacts = ArtifactSet()
    original = OutputArtifact("a.html", b"old")
    artifacts.add(original)
    artifacts.replace(original.with_content(b"new"))
    assert artifacts.get("a.html").content == b"new"
    with pytest.raises(KeyError):
        artifacts.replace(OutputArtifact("b.html", b"x"))


def test_write_creates_files(tmp_path):
    artifacts = ArtifactSet()
    artifacts.extend([OutputArtifact("index.html", b"home"), OutputArtifact("posts/a/index.html", b"a")])
    written = artifacts.write(tmp_path)
    assert written == [tmp_path / "index.html", tmp_path / "posts" / "a" / "index.html"]
    assert (tmp_path / "posts" / "a" / "index.html").read_bytes() == b"a"


def test_write_atomic_replaces_and_leaves_no_temp_files(tmp_path):
    target = tmp_path / "out" / "page.html"
    write_atomic(target, b"first")
    write_atomic(target, b"second")
    assert target.read_bytes() == b"second"
    assert os.listdir(target.parent) == ["page.html"]
    assert target.stat().st_mode & 0o777 == 0o644


def test_write_atomic_cleans_up_on_failure(tmp_path, monkeypatch):
    target = tmp_path / "page.html"
    target.write_bytes(b"old")

    def fail(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr("gorgon.artifacts.os.replace", fail)
    with pytest.raises(OSError):
        write_atomic(target, b"new")
    assert target.read_bytes() == b"old"
    assert os.listdir(tmp_path) == ["page.html"]


def test_copy_atomic(tmp_path):
    source = tmp_path / "src.bin"
    source.write_bytes(b"\x00\x01")
    target = tmp_path / "out" / "dst.bin"
    copy_atomic(source, target)
    assert target.read_bytes() == b"\x00\x01"
    assert target.stat().st_mtime_ns == source.stat().st_mtime_ns
