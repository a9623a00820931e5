import threading
import time
from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from types import MappingProxyType

import pytest

from gorgon.collections import Collection
from gorgon.content import ContentItem
from gorgon.errors import ConfigurationError, RenderError
from gorgon.render import RenderPipeline
from gorgon.templates import TemplateEngine


def make_item(name, body, source_type="markdown", template=None, url="default", **metadata):
    output_path = f"{name}/index.html"
    if url == "default":
        url = f"/{name}/"
    elif url is None:
        output_path = None
    return ContentItem(
        source_path=Path(f"/site/content/{name}.md"),
        rel_path=f"{name}.md",
        metadata=MappingProxyType(metadata),
        body=body,
        output_path=output_path,
        url=url,
        template=template,
        title=name.title(),
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        source_type=source_type,
    )


def make_engine(tmp_path, **layouts):
    includes = tmp_path / "_includes"
    includes.mkdir(exist_ok=True)
    for name, source in layouts.items():
        (includes / name).write_text(source, encoding="utf-8")
    return TemplateEngine(includes)


class FakeEngine:
    """Template capability that echoes its input, recording the threads used."""

    def __init__(self, delay=0.0):
        self.delay = delay
        self.threads = set()

    def render(self, template_id, context):
        return f"[{template_id}]{context['content']}".encode()

    def render_string(self, source, context, name="<string>"):
        self.threads.add(threading.get_ident())
        time.sleep(self.delay)
        return source


class PlainMarkdown:
    def convert(self, text):
        return f"<p>{text}</p>"


def test_markdown_item_with_layout(tmp_path):
    engine = make_engine(tmp_path, **{"base.html": "<title>{{ title }}</title><main>{{ content }}</main>"})
    item = make_item("hello", "# Hi {{ site_name }}\n\nSome *text*.", template="base")
    artifacts, errors = RenderPipeline(engine).render([item], {"site_name": "Demo"})

    assert errors == []
    [artifact] = artifacts
    html = artifact.content.decode()
    assert artifact.path == "hello/index.html"
    assert artifact.source == item.source_path
    assert artifact.media_type == "text/html"
    assert html.startswith("<title>Hello</title><main>")
    assert '<h1 id="hi-demo">Hi Demo</h1>' in html
    assert "<em>text</em>" in html


def test_front_matter_overrides_global_data_and_page_is_exposed(tmp_path):
    engine = make_engine(tmp_path)
    item = make_item("about", "{{ greeting }} {{ page.url }} {{ page.file_slug }}", source_type="html", greeting="hey")
    artifacts, _ = RenderPipeline(engine).render([item], {"greeting": "hello"})
    assert artifacts[0].content == b"hey /about/ about"


def test_failing_item_does_not_stop_others(tmp_path):
    engine = make_engine(tmp_path)
    good = make_item("good", "fine", source_type="html")
    bad = make_item("bad", "{{ missing() }}", source_type="html")
    artifacts, errors = RenderPipeline(engine).render([bad, good], {})

    assert [a.path for a in artifacts] == ["good/index.html"]
    assert len(errors) == 1
    assert isinstance(errors[0], RenderError)
    assert errors[0].source_path == bad.source_path


def test_missing_layout_is_a_render_error(tmp_path):
    engine = make_engine(tmp_path)
    item = make_item("post", "x", template="nope")
    artifacts, errors = RenderPipeline(engine).render([item], {})
    assert artifacts == []
    assert errors[0].source_path == item.source_path
    assert "nope" in errors[0].message


def test_permalink_false_produces_nothing(tmp_path):
    item = make_item("data", "{{ boom() }}", url=None, permalink=False)
    artifacts, errors = RenderPipeline(make_engine(tmp_path)).render([item], {})
    assert artifacts == []
    assert errors == []


def test_template_engine_can_be_disabled(tmp_path):
    item = make_item("raw", "{{ not_rendered }}", source_type="html", template_engine=False)
    artifacts, errors = RenderPipeline(make_engine(tmp_path)).render([item], {})
    assert errors == []
    assert artifacts[0].content == b"{{ not_rendered }}"


def test_non_html_output_gets_its_media_type(tmp_path):
    item = ContentItem(
        source_path=Path("/site/content/robots.jinja"),
        rel_path="robots.jinja",
        metadata=MappingProxyType({}),
        body="User-agent: *",
        output_path="robots.txt",
        url="/robots.txt",
        template=None,
        title="Robots",
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        source_type="jinja",
    )
    artifacts, _ = RenderPipeline(make_engine(tmp_path)).render([item], {})
    assert artifacts[0].media_type == "text/plain"


def test_pagination(tmp_path):
    engine = make_engine(tmp_path)
    posts = [make_item(f"p{n}", "", source_type="html") for n in range(5)]
    body = (
        "{% for p in pagination.items %}{{ p.title }} {% endfor %}"
        "|{{ pagination.page_number }}/{{ pagination.total_pages }}"
        "|{{ pagination.previous }}|{{ pagination.next }}|{{ page.url }}"
    )
    item = ContentItem(
        source_path=Path("/site/content/blog/index.html"),
        rel_path="blog/index.html",
        metadata=MappingProxyType({"pagination": {"collection": "posts", "size": 2}}),
        body=body,
        output_path="blog/index.html",
        url="/blog/",
        template=None,
        title="Blog",
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
        source_type="html",
    )
    artifacts, errors = RenderPipeline(engine).render([item], {}, {"posts": Collection("posts", posts)})

    assert errors == []
    assert [a.path for a in artifacts] == ["blog/index.html", "blog/2/index.html", "blog/3/index.html"]
    assert [a.content.decode() for a in artifacts] == [
        "P0 P1 |1/3|None|/blog/2/|/blog/",
        "P2 P3 |2/3|/blog/|/blog/3/|/blog/2/",
        "P4 |3/3|/blog/2/|None|/blog/3/",
    ]


def test_pagination_of_non_index_output(tmp_path):
    posts = Collection("posts", [make_item(f"p{n}", "", source_type="html") for n in range(3)])
    item = make_item("archive", "{{ pagination.items | length }}", source_type="html", pagination={"collection": "posts", "size": 2})
    item = replace(item, output_path="archive.html", url="/archive.html")
    artifacts, _ = RenderPipeline(make_engine(tmp_path)).render([item], {}, {"posts": posts})
    assert [a.path for a in artifacts] == ["archive.html", "archive-2.html"]


def test_empty_pagination_collection_renders_one_page(tmp_path):
    item = make_item("blog", "{{ pagination.total_pages }}", source_type="html", pagination={"collection": "posts"})
    artifacts, _ = RenderPipeline(make_engine(tmp_path)).render([item], {}, {"posts": Collection("posts", [])})
    assert [a.content for a in artifacts] == [b"1"]


def test_unknown_pagination_collection_is_a_render_error(tmp_path):
    item = make_item("blog", "", source_type="html", pagination={"collection": "nope"})
    artifacts, errors = RenderPipeline(make_engine(tmp_path)).render([item], {}, {})
    assert artifacts == []
    assert "nope" in errors[0].message


def test_malformed_pagination_aborts(tmp_path):
    item = make_item("blog", "", source_type="html", pagination={"collection": "posts", "size": 0})
    with pytest.raises(ConfigurationError):
        RenderPipeline(make_engine(tmp_path)).render([item], {}, {"posts": Collection("posts", [])})


def test_parallel_render_keeps_item_order():
    engine = FakeEngine(delay=0.01)
    items = [make_item(f"i{n}", f"body {n}", template="base") for n in range(12)]
    pipeline = RenderPipeline(engine, PlainMarkdown(), workers=4)
    artifacts, errors = pipeline.render(items, {})

    assert errors == []
    assert [a.path for a in artifacts] == [f"i{n}/index.html" for n in range(12)]
    assert artifacts[3].content == b"[base]<p>body 3</p>"
    assert len(engine.threads) > 1
