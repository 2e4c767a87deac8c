"""Image reference extraction, path remapping and resolution."""

from __future__ import annotations

import base64
import logging
import os
import re
import shutil
from collections import defaultdict, deque
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Deque, Dict, List, Optional, Sequence, Tuple

from .render import parse_markup

LOG = logging.getLogger("md2doc")

IMAGES_SUBDIR = "images"
EXTERNAL_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
IMG_REF_RE = re.compile(r'!\[.*?\]\((.*?)(?:\s+".*?")?\)')
DEFAULT_REMAP_PAIRS = (("/assets/", "/_assets/"),)
IMAGE_MIME_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "svg": "image/svg+xml",
    "webp": "image/webp",
}


@dataclass(frozen=True)
class RemapRule:
    pattern: re.Pattern[str]
    replacement: str

    @classmethod
    def literal(cls, source: str, replacement: str) -> "RemapRule":
        return cls(re.compile(re.escape(source)), replacement)

    def apply(self, path: str) -> str:
        return self.pattern.sub(lambda _match: self.replacement, path)


@dataclass(frozen=True)
class PathRemapper:
    """Ordered remap rules; each rule replaces every occurrence of its pattern."""

    rules: Tuple[RemapRule, ...] = ()

    def remap(self, raw_path: str) -> Tuple[str, bool]:
        """Return ``(path, is_external)``; external URLs are never rewritten."""
        if is_external_reference(raw_path):
            return raw_path, True
        remapped = raw_path
        for rule in self.rules:
            remapped = rule.apply(remapped)
        return remapped, False


@dataclass(frozen=True)
class ImageReference:
    raw_path: str
    source_path: Path


def is_external_reference(path: str) -> bool:
    return bool(EXTERNAL_URL_RE.match(path or ""))


def default_remapper() -> PathRemapper:
    return PathRemapper(tuple(RemapRule.literal(src, dst) for src, dst in DEFAULT_REMAP_PAIRS))


def parse_remap_option(value: Optional[str]) -> Tuple[RemapRule, ...]:
    """Parse ``"from:to,from2:to2"`` into literal remap rules, skipping incomplete pairs."""
    rules: List[RemapRule] = []
    for pair in (value or "").split(","):
        parts = pair.split(":")
        source = parts[0].strip()
        target = parts[1].strip() if len(parts) > 1 else ""
        if not source or not target:
            if pair.strip():
                LOG.warning("Ignoring invalid path remapping: %s", pair.strip())
            continue
        rules.append(RemapRule.literal(source, target))
        LOG.info("Added path remapping: %s -> %s", source, target)
    return tuple(rules)


def extract_image_references(text: str, source_path: Path) -> List[ImageReference]:
    return [
        ImageReference(raw_path=match.group(1).strip(), source_path=source_path)
        for match in IMG_REF_RE.finditer(text or "")
    ]


def resolve_local_path(remapped: str, source_dir: Path) -> Path:
    return Path(os.path.normpath(source_dir / remapped))


def image_mime_type(path: Path) -> str:
    ext = path.suffix[1:].lower()
    return IMAGE_MIME_TYPES.get(ext, f"image/{ext}")


def encode_data_uri(path: Path) -> str:
    payload = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{image_mime_type(path)};base64,{payload}"


def _images_subpath(remapped: str) -> Tuple[str, ...]:
    parent = PurePosixPath(remapped.replace("\\", "/")).parent
    return tuple(part for part in parent.parts if part not in ("/", ".", ".."))


def copy_linked_image(reference: ImageReference, remapper: PathRemapper, output_dir: Path) -> str:
    """Copy one local image under ``output_dir/images`` and return its new relative reference.

    External URLs and missing files come back unchanged.
    """
    remapped, external = remapper.remap(reference.raw_path)
    if external:
        LOG.info("External URL detected, keeping as-is: %s", reference.raw_path)
        return reference.raw_path

    resolved = resolve_local_path(remapped, reference.source_path.parent)
    if not resolved.is_file():
        LOG.warning("Image not found: %s", resolved)
        return reference.raw_path

    subpath = _images_subpath(remapped)
    target_dir = output_dir.joinpath(IMAGES_SUBDIR, *subpath)
    target_dir.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(resolved, target_dir / resolved.name)
    LOG.info("Copied image: %s -> %s", resolved, target_dir / resolved.name)
    return "/".join((IMAGES_SUBDIR, *subpath, resolved.name))


def copy_linked_images(references: Sequence[ImageReference], remapper: PathRemapper, output_dir: Path) -> List[str]:
    return [copy_linked_image(reference, remapper, output_dir) for reference in references]


def rewrite_image_sources(markup: str, original_paths: Sequence[str], new_paths: Sequence[str]) -> str:
    """Rewrite ``<img src>`` values that literally equal an original path.

    Pairs apply in order and every matching element is rewritten, so a path
    that appears twice ends up with the first pair's replacement.
    """
    soup = parse_markup(markup)
    for original, new in zip(original_paths, new_paths):
        if original == new:
            continue
        for img in soup.find_all("img", src=original):
            img["src"] = new
    return str(soup)


def _first_existing(remapped: str, source_paths: Sequence[Path]) -> Tuple[Optional[Path], Optional[Path]]:
    first_candidate: Optional[Path] = None
    for source_path in source_paths:
        candidate = resolve_local_path(remapped, source_path.parent)
        if first_candidate is None:
            first_candidate = candidate
        if candidate.is_file():
            return candidate, first_candidate
    return None, first_candidate


def embed_images(
    markup: str,
    references: Sequence[ImageReference],
    remapper: PathRemapper,
    source_paths: Sequence[Path],
) -> str:
    """Inline every local ``<img>`` in ``markup`` as a base64 data URI.

    Each element is paired with the next unconsumed reference carrying the
    same raw path, which decides the directory it resolves against. Elements
    without a reference (inline HTML) try each of ``source_paths`` in order.
    """
    soup = parse_markup(markup)
    pending: Dict[str, Deque[Path]] = defaultdict(deque)
    for reference in references:
        pending[reference.raw_path].append(reference.source_path)

    for img in soup.find_all("img", src=True):
        src = img["src"]
        remapped, external = remapper.remap(src)
        if external:
            LOG.info("External URL image detected: %s", src)
            continue

        queue = pending.get(src)
        candidates = [queue.popleft()] if queue else list(source_paths)
        resolved, first_candidate = _first_existing(remapped, candidates)
        if resolved is None:
            LOG.warning("Image not found for embedding: %s", first_candidate or remapped)
            continue

        img["src"] = encode_data_uri(resolved)
        LOG.info("Embedded image: %s", resolved.name)
    return str(soup)
