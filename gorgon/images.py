"""Image transform plugin for Gorgon.

After rendering, the plugin scans HTML artifacts for `<img src>` references
to local files. Each reference is turned into a derived image (re-encoded
and optionally downscaled with Pillow) and its `src` is rewritten to point
at the derived file. `data-format` and `data-width` attributes on the
element override the configured defaults.

Derived images are keyed by (source file, format, width). The cache hands
out one future per key, so pages rendered in parallel that reference the
same image share a single derivation.

Key classes:
- PillowImageTransformer: ImageTransformer implementation backed by Pillow.
- DerivedArtifactCache: Concurrency-safe key -> artifact map.
- ImageTransformPlugin: POST_RENDER plugin rewriting image references.
"""

from __future__ import annotations

import hashlib
import io
import logging
import re
import threading
from collections.abc import Callable
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import unquote

from PIL import Image, UnidentifiedImageError

from .artifacts import OutputArtifact
from .config import ImageConfig, parse_image_config
from .errors import ConfigurationError, RenderError, UnsupportedFormatError
from .plugins import BuildContext, Phase, Plugin
from .protocols import ImageTransformer

logger = logging.getLogger(__name__)

_IMG_TAG_RE = re.compile(r"<img\b[^>]*>", re.IGNORECASE)
_ATTR_RE = re.compile(
    r"""(?P<name>[a-zA-Z_:][-\w:.]*)\s*=\s*(?P<quote>["'])(?P<value>.*?)(?P=quote)""",
    re.DOTALL,
)
_SRC_RE = re.compile(r"""(?P<prefix>(?<![-\w:])src\s*=\s*(?P<quote>["']))(?P<url>.*?)(?P=quote)""", re.IGNORECASE)

# Remote and inline images are never transformed.
_URL_SKIP_PREFIXES = ("http://", "https://", "//", "data:")
# Pillow cannot rasterize vector images; they are served as they are.
_VECTOR_SUFFIXES = (".svg", ".svgz")

# Pillow format name and file extension per supported output format.
FORMATS = {
    "jpeg": ("JPEG", "jpg"),
    "png": ("PNG", "png"),
    "webp": ("WEBP", "webp"),
    "gif": ("GIF", "gif"),
}
_ALIASES = {"jpg": "jpeg"}


def normalize_format(fmt: str) -> str:
    """Return the canonical name of an output format.

    Raises:
        UnsupportedFormatError: If the format is not supported.
    """
    name = _ALIASES.get(str(fmt).lower(), str(fmt).lower())
    if name not in FORMATS:
        raise UnsupportedFormatError(fmt)
    return name


class PillowImageTransformer:
    """Re-encodes images with Pillow, downscaling to a maximum width.

    Images are never upscaled; a width larger than the source keeps the
    source size.
    """

    def transform(self, data: bytes, fmt: str, width: int | None = None) -> bytes:
        name = normalize_format(fmt)
        pil_format = FORMATS[name][0]
        buffer = io.BytesIO()
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                result = img
                if width and img.width > width:
                    height = max(1, round(img.height * width / img.width))
                    result = img.resize((width, height), Image.Resampling.LANCZOS)
                if pil_format == "JPEG" and result.mode not in ("RGB", "L"):
                    result = result.convert("RGB")
                result.save(buffer, format=pil_format)
        except (UnidentifiedImageError, OSError, ValueError) as exc:
            raise UnsupportedFormatError(fmt, f"Cannot convert image to {name}: {exc}") from exc
        return buffer.getvalue()


@dataclass(frozen=True)
class ImageKey:
    """Identity of a derived image.

    `mtime_ns` makes an edited source image produce a new derivation on the
    next pass.
    """

    source: Path
    format: str
    width: int | None
    mtime_ns: int = 0


class DerivedArtifactCache:
    """Concurrency-safe map from ImageKey to derived artifact.

    The first caller for a key computes the artifact; concurrent callers for
    the same key block on the same future and receive the same result (or
    the same exception). Failed derivations are not kept, and `prune` drops
    the keys no caller asked for since the previous prune.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._futures: dict[ImageKey, Future[OutputArtifact]] = {}
        self._used: set[ImageKey] = set()

    def get_or_create(
        self, key: ImageKey, factory: Callable[[], OutputArtifact]
    ) -> OutputArtifact:
        with self._lock:
            self._used.add(key)
            future = self._futures.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._futures[key] = future
        if owner:
            try:
                future.set_result(factory())
            except Exception as exc:
                future.set_exception(exc)
                with self._lock:
                    if self._futures.get(key) is future:
                        del self._futures[key]
        return future.result()

    def prune(self) -> int:
        """Drop entries unused since the last prune; return how many were dropped."""
        with self._lock:
            stale = [key for key in self._futures if key not in self._used]
            for key in stale:
                del self._futures[key]
            self._used = set()
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._futures.clear()
            self._used.clear()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._futures

    def __len__(self) -> int:
        with self._lock:
            return len(self._futures)


@dataclass
class _PageResult:
    content: bytes | None
    derived: list[OutputArtifact]
    errors: list[RenderError]


class ImageTransformPlugin(Plugin):
    """Rewrites local `<img src>` references to derived images.

    Attributes:
        config: Image settings (ImageConfig).
        transformer: Image capability used to derive images.
        cache: Derived images, kept across passes.
    """

    name = "images"
    phases = frozenset({Phase.POST_RENDER})
    reads = frozenset({"artifacts"})

    def __init__(
        self,
        config: ImageConfig | None = None,
        transformer: ImageTransformer | None = None,
    ):
        self.config = config or ImageConfig()
        self.transformer = transformer or PillowImageTransformer()
        self.cache = DerivedArtifactCache()

    def configure(self, config: Any) -> None:
        if isinstance(config, (dict, bool)):
            config = parse_image_config(config)
        if not isinstance(config, ImageConfig):
            raise ConfigurationError("images plugin expects an ImageConfig")
        self.config = config

    def post_render(self, context: BuildContext) -> None:
        pages = [a for a in context.artifacts if a.is_html]
        workers = max(1, context.config.workers)
        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(lambda a: self.process(a, context), pages))

        derived_count = 0
        for page, result in zip(pages, results):
            context.errors.extend(result.errors)
            if result.content is not None:
                context.artifacts.replace(page.with_content(result.content))
            for derived in result.derived:
                # Identical sources hash to the same path and the same bytes.
                if derived.path not in context.artifacts:
                    context.artifacts.add(derived)
                    derived_count += 1
        if derived_count:
            logger.info("Derived %d images", derived_count)
        dropped = self.cache.prune()
        if dropped:
            logger.debug("Dropped %d stale derived images", dropped)

    def process(self, page: OutputArtifact, context: BuildContext) -> _PageResult:
        """Rewrite the image references of one HTML artifact."""
        html = page.content.decode("utf-8")
        derived: list[OutputArtifact] = []
        errors: list[RenderError] = []

        def rewrite_tag(match: re.Match) -> str:
            tag = match.group(0)
            attrs = {m.group("name").lower(): m.group("value") for m in _ATTR_RE.finditer(tag)}
            src = attrs.get("src")
            if not src or src.startswith(_URL_SKIP_PREFIXES) or _is_vector(src):
                return tag
            try:
                artifact = self.derive(src, attrs, page, context)
            except (RenderError, UnsupportedFormatError) as exc:
                message = exc.message if isinstance(exc, RenderError) else str(exc)
                errors.append(RenderError(page.source, message, exc))
                return tag
            derived.append(artifact)
            url = "/" + artifact.path
            return _SRC_RE.sub(lambda m: f"{m.group('prefix')}{url}{m.group('quote')}", tag, count=1)

        rewritten = _IMG_TAG_RE.sub(rewrite_tag, html)
        content = rewritten.encode("utf-8") if rewritten != html else None
        return _PageResult(content, derived, errors)

    def derive(
        self,
        src: str,
        attrs: dict[str, str],
        page: OutputArtifact,
        context: BuildContext,
    ) -> OutputArtifact:
        """Return the derived artifact for one image reference.

        Raises:
            RenderError: If the source image is missing or an attribute is invalid.
            UnsupportedFormatError: If the format cannot be produced.
        """
        fmt = normalize_format(attrs.get("data-format") or self.config.formats[0])
        width = self.config.width
        if attrs.get("data-width"):
            try:
                width = int(attrs["data-width"])
            except ValueError:
                raise RenderError(page.source, f"Invalid data-width {attrs['data-width']!r} for {src}") from None
        source = self._resolve_source(src, page, context)
        if source is None:
            raise RenderError(page.source, f"Image not found: {src}")
        key = ImageKey(source, fmt, width, source.stat().st_mtime_ns)
        return self.cache.get_or_create(key, lambda: self._make_artifact(key))

    def _make_artifact(self, key: ImageKey) -> OutputArtifact:
        data = key.source.read_bytes()
        content = self.transformer.transform(data, key.format, key.width)
        digest = hashlib.sha1(data).hexdigest()[:8]
        suffix = f"-{key.width}" if key.width else ""
        extension = FORMATS[key.format][1]
        path = PurePosixPath(self.config.output) / f"{key.source.stem}-{digest}{suffix}.{extension}"
        logger.debug("Derived %s from %s", path, key.source)
        return OutputArtifact(
            path=path.as_posix(),
            content=content,
            source=key.source,
            media_type=f"image/{key.format}",
        )

    @staticmethod
    def _resolve_source(src: str, page: OutputArtifact, context: BuildContext) -> Path | None:
        cleaned = unquote(src.split("#", 1)[0].split("?", 1)[0])
        config = context.config
        if cleaned.startswith("/"):
            rel = cleaned.lstrip("/")
            candidates = [config.input_dir / rel, config.project_root / rel]
        else:
            base = page.source.parent if page.source else config.input_dir
            candidates = [base / cleaned]
        for candidate in candidates:
            if candidate.is_file():
                return candidate
        return None


def _is_vector(src: str) -> bool:
    path = src.split("#", 1)[0].split("?", 1)[0]
    return path.lower().endswith(_VECTOR_SUFFIXES)
