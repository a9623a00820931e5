import hashlib
import io
from pathlib import Path
from xml.etree import ElementTree

import pytest
from PIL import Image

from gorgon.build import Site, build_site
from gorgon.config import SiteConfig
from gorgon.errors import ArtifactCollisionError, ConfigurationError, DuplicateFilterError

ATOM = "{http://www.w3.org/2005/Atom}"

CONFIG = """\
collections:
  posts:
    tag: post
    sort: date
navigation: true
feed:
  title: Blog
  base_url: https://example.com
  limit: 1
passthrough:
  - css
"""

BASE_LAYOUT = (
    "<html><title>{{ title }}</title>"
    '{% for e in navigation %}<a href="{{ e.url }}">{{ e.title }}</a>{% endfor %}'
    "{{ content }}</html>"
)


def write(path: Path, text: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    return path


def make_project(root: Path) -> Path:
    write(root / "gorgon.yaml", CONFIG)
    write(root / "_includes" / "base.html", BASE_LAYOUT)
    write(root / "_data" / "site.yaml", "site_name: Demo\n")
    write(
        root / "content" / "index.md",
        "---\ntitle: Home\nlayout: base\nnav:\n  order: 1\n---\n"
        "# Welcome to {{ site_name }}\n\n{% for p in collections.posts %}{{ p.title }};{% endfor %}\n",
    )
    write(root / "content" / "posts" / "2024-01-01-a.md", "---\ntitle: A\ndate: 2024-01-01\ntags: post\nlayout: base\n---\nFirst\n")
    write(root / "content" / "posts" / "2024-02-01-b.md", "---\ntitle: B\ndate: 2024-02-01\ntags: post\nlayout: base\n---\nSecond\n")
    write(root / "css" / "site.css", "body { color: red; }")
    return root


def snapshot(directory: Path) -> dict[str, bytes]:
    return {p.relative_to(directory).as_posix(): p.read_bytes() for p in directory.rglob("*") if p.is_file()}


def test_full_build(tmp_path):
    make_project(tmp_path)
    result = build_site(tmp_path)
    site = tmp_path / "_site"

    assert result.ok
    assert [item.rel_path for item in result.items] == [
        "index.md",
        "posts/2024-01-01-a.md",
        "posts/2024-02-01-b.md",
    ]
    assert [item.title for item in result.collections["posts"]] == ["A", "B"]
    assert sorted(snapshot(site)) == ["css/site.css", "feed.xml", "index.html", "posts/a/index.html", "posts/b/index.html"]
    assert result.copied == 1

    index = (site / "index.html").read_text(encoding="utf-8")
    assert index.startswith("<html><title>Home</title>")
    assert '<a href="/">Home</a>' in index
    assert "Welcome to Demo</h1>" in index
    assert "A;B;" in index
    assert "<p>Second</p>" in (site / "posts" / "b" / "index.html").read_text(encoding="utf-8")

    feed = ElementTree.fromstring((site / "feed.xml").read_bytes())
    entries = feed.findall(f"{ATOM}entry")
    assert [e.find(f"{ATOM}title").text for e in entries] == ["B"]
    assert entries[0].find(f"{ATOM}link").get("href") == "https://example.com/posts/b/"


def test_collision_is_detected_before_anything_is_written(tmp_path):
    make_project(tmp_path)
    build_site(tmp_path)
    before = snapshot(tmp_path / "_site")

    write(tmp_path / "content" / "feed.md", "---\npermalink: /feed.xml\n---\nNot a feed\n")
    write(tmp_path / "content" / "posts" / "2024-03-01-c.md", "---\ntitle: C\ntags: post\n---\nThird\n")
    with pytest.raises(ArtifactCollisionError) as excinfo:
        build_site(tmp_path)

    assert excinfo.value.path == "feed.xml"
    assert snapshot(tmp_path / "_site") == before


def test_page_collision(tmp_path):
    write(tmp_path / "content" / "a.md", "---\npermalink: /same/\n---\nA\n")
    write(tmp_path / "content" / "b.md", "---\npermalink: /same/\n---\nB\n")
    with pytest.raises(ArtifactCollisionError):
        build_site(tmp_path)
    assert not (tmp_path / "_site").exists()


def test_stale_outputs_are_pruned_between_passes(tmp_path):
    make_project(tmp_path)
    site = Site.from_config(tmp_path)
    site.build()
    assert (tmp_path / "_site" / "posts" / "a" / "index.html").exists()

    (tmp_path / "content" / "posts" / "2024-01-01-a.md").unlink()
    result = site.build()

    assert result.ok
    assert not (tmp_path / "_site" / "posts" / "a").exists()
    assert (tmp_path / "_site" / "posts" / "b" / "index.html").exists()


def test_clean_output(tmp_path):
    make_project(tmp_path)
    write(tmp_path / "_site" / "leftover.txt", "old")
    build_site(tmp_path, clean_output=True)
    assert not (tmp_path / "_site" / "leftover.txt").exists()
    assert (tmp_path / "_site" / "index.html").exists()


def test_clean_refuses_to_delete_the_project(tmp_path):
    write(tmp_path / "gorgon.yaml", "dir:\n  output: .\n")
    write(tmp_path / "content" / "index.md", "Home")
    with pytest.raises(ConfigurationError):
        build_site(tmp_path, clean_output=True)
    assert (tmp_path / "gorgon.yaml").exists()


def test_render_errors_do_not_stop_the_pass(tmp_path):
    write(tmp_path / "content" / "good.md", "Fine")
    bad = write(tmp_path / "content" / "bad.md", "{{ nope() }}")
    result = build_site(tmp_path)

    assert not result.ok
    assert [error.source_path for error in result.errors] == [bad]
    assert (tmp_path / "_site" / "good" / "index.html").exists()
    assert not (tmp_path / "_site" / "bad").exists()


def test_unreadable_files_are_skipped(tmp_path):
    (tmp_path / "content").mkdir()
    (tmp_path / "content" / "binary.md").write_bytes(b"\xff\xfe\x00bad")
    write(tmp_path / "content" / "ok.md", "Fine")
    result = build_site(tmp_path)

    assert result.ok
    assert [e.source_path.name for e in result.discovery_errors] == ["binary.md"]
    assert [item.rel_path for item in result.items] == ["ok.md"]


def test_malformed_front_matter_is_fatal(tmp_path):
    write(tmp_path / "content" / "bad.md", "---\ntitle: [\n---\nBody")
    with pytest.raises(ConfigurationError):
        build_site(tmp_path)


def test_permalink_outside_the_output_is_a_configuration_error(tmp_path):
    write(tmp_path / "content" / "a.md", "---\npermalink: ../escape/\n---\nA")
    with pytest.raises(ConfigurationError, match="escape"):
        build_site(tmp_path)
    assert not (tmp_path / "escape").exists()


def test_drafts(tmp_path):
    write(tmp_path / "content" / "_wip.md", "Work in progress")
    write(tmp_path / "content" / "flagged.md", "---\ndraft: true\n---\nHidden")
    assert build_site(tmp_path).items == []
    with_drafts = build_site(tmp_path, include_drafts=True)
    assert sorted(item.rel_path for item in with_drafts.items) == ["_wip.md", "flagged.md"]


def test_images_are_derived_during_the_build(tmp_path):
    write(tmp_path / "gorgon.yaml", "images:\n  formats: [png]\n  width: 10\n")
    buffer = io.BytesIO()
    Image.new("RGB", (40, 20), "blue").save(buffer, format="PNG")
    data = buffer.getvalue()
    (tmp_path / "content" / "img").mkdir(parents=True)
    (tmp_path / "content" / "img" / "photo.png").write_bytes(data)
    write(tmp_path / "content" / "gallery.html", '<img src="/img/photo.png" alt="p">')

    result = build_site(tmp_path)

    derived = f"img/photo-{hashlib.sha1(data).hexdigest()[:8]}-10.png"
    assert result.ok
    html = (tmp_path / "_site" / "gallery" / "index.html").read_text(encoding="utf-8")
    assert html == f'<img src="/{derived}" alt="p">'
    with Image.open(tmp_path / "_site" / derived) as image:
        assert image.size == (10, 5)


def make_site(tmp_path):
    config = SiteConfig(
        project_root=tmp_path,
        input_dir=tmp_path / "content",
        includes_dir=tmp_path / "_includes",
        data_dir=tmp_path / "_data",
        output_dir=tmp_path / "_site",
        workers=1,
    )
    return Site(config)


def test_configuration_api(tmp_path):
    site = make_site(tmp_path)
    site.add_filter("shout", lambda value: str(value).upper())
    with pytest.raises(DuplicateFilterError):
        site.add_filter("slugify", str.lower)

    site.add_watch_target("css/**/*.css")
    site.add_watch_target("css/**/*.css")
    assert site.watch_targets == ["css/**/*.css"]

    site.add_collection("long", predicate=lambda item: len(item.body) > 10)
    with pytest.raises(ConfigurationError):
        site.add_collection("neither")
    with pytest.raises(ConfigurationError):
        site.add_collection("both", tag="x", predicate=lambda item: True)
    with pytest.raises(ConfigurationError):
        site.add_collection("long", tag="x")

    site.add_passthrough_copy({"static": "assets"})
    write(tmp_path / "static" / "logo.svg", "<svg/>")
    write(tmp_path / "content" / "a.md", "short")
    write(tmp_path / "content" / "b.html", "{{ 'a long enough body' | shout }} {{ collections.long | length }}")

    result = site.build()
    assert [item.rel_path for item in result.collections["long"]] == ["b.html"]
    assert (tmp_path / "_site" / "b" / "index.html").read_text(encoding="utf-8") == "A LONG ENOUGH BODY 1"
    assert (tmp_path / "_site" / "assets" / "logo.svg").read_text(encoding="utf-8") == "<svg/>"
