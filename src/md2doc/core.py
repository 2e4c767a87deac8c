"""Core document assembly pipeline for md2doc."""

from __future__ import annotations

import html
import logging
import re
import unicodedata
from collections import deque
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Deque, List, Optional, Sequence, Set, Tuple

from .images import (
    ImageReference,
    PathRemapper,
    copy_linked_images,
    default_remapper,
    embed_images,
    extract_image_references,
    rewrite_image_sources,
)
from .render import (
    DEFAULT_RENDER_TIMEOUT,
    PAPER_SIZES,
    MarkdownRenderer,
    PdfRenderer,
    RenderError,
    highlight_style_defs,
    parse_markup,
)

LOG = logging.getLogger("md2doc")

EXIT_INVALID_ARGS = 6
EXIT_NO_INPUT = 8
EXIT_CONVERSION_FAILED = 9
EXIT_RENDER_FAILED = 10

OUTPUT_FORMATS = ("html", "pdf")
MARKDOWN_SUFFIX = ".md"
COMBINED_STEM = "combined"
COMBINED_TITLE = "Markdown Documentation"
COMBINED_HEADING = "Documentation"
TOC_INDENT_PX = 20
HEADING_LINE_RE = re.compile(r"^(#{1,6})\s+(.+)$")

BASE_CSS = """\
body {
  font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif;
  line-height: 1.6;
  color: #333;
  max-width: 800px;
  margin: 0 auto;
  padding: 20px;
}
.toc-container {
  background-color: #f8f9fa;
  border: 1px solid #ddd;
  border-radius: 5px;
  padding: 15px;
  margin-bottom: 30px;
}
.toc { list-style-type: none; padding-left: 0; }
.toc li { margin-bottom: 8px; }
h1, h2, h3, h4, h5, h6 { color: #2c3e50; font-weight: 600; margin-top: 1.5em; margin-bottom: 0.5em; }
h1 { font-size: 2.2em; border-bottom: 2px solid #eaecef; padding-bottom: 10px; }
h2 { font-size: 1.8em; border-bottom: 1px solid #eaecef; padding-bottom: 7px; }
h3 { font-size: 1.5em; }
h4 { font-size: 1.3em; }
h5 { font-size: 1.2em; }
h6 { font-size: 1.1em; }
pre.hljs {
  padding: 16px;
  overflow: auto;
  font-size: 0.9em;
  line-height: 1.45;
  background-color: #f6f8fa;
  border-radius: 6px;
  margin: 1em 0;
}
code:not(.hljs) {
  background-color: rgba(27, 31, 35, 0.05);
  border-radius: 3px;
  font-family: "SFMono-Regular", Consolas, "Liberation Mono", Menlo, monospace;
  font-size: 0.9em;
  padding: 0.2em 0.4em;
}
table { border-collapse: collapse; width: 100%; margin: 1em 0; overflow-x: auto; display: block; }
table th { background-color: #f2f2f2; font-weight: 600; text-align: left; }
table th, table td { border: 1px solid #dfe2e5; padding: 8px 12px; }
table tr:nth-child(even) { background-color: #f6f8fa; }
img { max-width: 100%; height: auto; display: block; margin: 1em auto; border-radius: 5px; }
.page-break { page-break-after: always; }
.file-header {
  background-color: #e1e4e8;
  border-radius: 5px 5px 0 0;
  padding: 10px 15px;
  font-weight: bold;
  margin-top: 30px;
}
"""


class NoInputError(RuntimeError):
    """No Markdown documents were discovered for the run."""


@dataclass(frozen=True)
class ConversionConfig:
    input_dir: Path
    output_dir: Path
    output_format: str = "html"
    single: bool = False
    paper: str = "A4"
    remapper: PathRemapper = field(default_factory=default_remapper)
    render_timeout: float = DEFAULT_RENDER_TIMEOUT
    verbose: bool = False
    debug: bool = False

    @property
    def paginated(self) -> bool:
        return self.output_format == "pdf"


@dataclass
class HeadingRecord:
    level: int
    text: str
    anchor_id: str
    source_text: str


@dataclass
class ConversionUnit:
    stem: str
    title: str
    heading: str
    sources: List[Path]
    combined: bool = False


@dataclass
class AssembledDocument:
    title: str
    heading: str
    css: str
    toc_html: str
    body_html: str

    def to_html(self) -> str:
        return (
            "<!DOCTYPE html>\n"
            "<html>\n"
            "<head>\n"
            '<meta charset="UTF-8">\n'
            f"<title>{html.escape(self.title)}</title>\n"
            f"<style>\n{self.css}</style>\n"
            "</head>\n"
            "<body>\n"
            f"<h1>{html.escape(self.heading)}</h1>\n"
            f"{self.toc_html}"
            f"{self.body_html}\n"
            "</body>\n"
            "</html>\n"
        )


def setup_logging(verbose: bool, debug: bool) -> None:
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    LOG.setLevel(level)
    LOG.propagate = False
    if not LOG.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
        LOG.addHandler(handler)


def _log_progress(current: int, total: int, name: str) -> None:
    LOG.info("Converting [%d/%d] %s", current, total, name)


def safe_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8", newline="\n")


def read_markdown(path: Path) -> str:
    """Decode ``path`` as UTF-8; undecodable bytes become U+FFFD and are reported."""
    raw = path.read_bytes()
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        LOG.warning("Invalid UTF-8 in %s (%s); undecodable bytes were replaced", path, exc.reason)
        return raw.decode("utf-8", errors="replace")


def discover_markdown_files(directory: Path) -> List[Path]:
    """Depth-first walk sorted by name; a directory's files come before its subdirectories."""
    entries = sorted(directory.iterdir(), key=lambda entry: entry.name)
    found = [entry for entry in entries if entry.is_file() and entry.suffix.lower() == MARKDOWN_SUFFIX]
    for entry in entries:
        if entry.is_dir():
            found.extend(discover_markdown_files(entry))
    return found


def slugify_heading(text: str) -> str:
    slug = unicodedata.normalize("NFKD", text or "").encode("ascii", "ignore").decode("ascii").lower()
    slug = re.sub(r"[^a-z0-9]+", "-", slug)
    return slug.strip("-")


def extract_headings(text: str) -> List[HeadingRecord]:
    """Scan raw Markdown for ATX headings, fenced code blocks included."""
    headings: List[HeadingRecord] = []
    for line in (text or "").splitlines():
        match = HEADING_LINE_RE.match(line)
        if not match:
            continue
        title = match.group(2).strip()
        headings.append(
            HeadingRecord(level=len(match.group(1)), text=title, anchor_id=slugify_heading(title), source_text=title)
        )
    return headings


def qualify_headings(headings: Sequence[HeadingRecord], label: str) -> List[HeadingRecord]:
    qualified: List[HeadingRecord] = []
    for heading in headings:
        text = f"{heading.text} ({label})"
        qualified.append(replace(heading, text=text, anchor_id=slugify_heading(text)))
    return qualified


def build_toc_html(headings: Sequence[HeadingRecord], paginated: bool = False) -> str:
    lines = ['<div class="toc-container">', "<h2>Table of Contents</h2>", '<ul class="toc">']
    for heading in headings:
        indent = "  " * (heading.level - 1)
        display = html.escape(heading.text.replace("**", ""), quote=False)
        lines.append(f'{indent}<li class="toc-level-{heading.level}"><a href="#{heading.anchor_id}">{display}</a></li>')
    lines.extend(["</ul>", "</div>"])
    if paginated:
        lines.append('<div class="page-break"></div>')
    return "\n".join(lines) + "\n"


def _heading_matches(element: Any, text: str) -> bool:
    return element.decode_contents().strip() == text or element.get_text().strip() == text


def inject_heading_ids(markup: str, headings: Sequence[HeadingRecord]) -> str:
    """Set ``id`` on the first unconsumed ``<hN>`` whose text equals each record's source text."""
    soup = parse_markup(markup)
    consumed: Set[int] = set()
    for heading in headings:
        target = heading.source_text.strip()
        for element in soup.find_all(f"h{heading.level}"):
            if id(element) in consumed or not _heading_matches(element, target):
                continue
            element["id"] = heading.anchor_id
            consumed.add(id(element))
            break
        else:
            LOG.debug("No rendered h%d matched heading: %s", heading.level, target)
    return str(soup)


def generate_css() -> str:
    toc_levels = "".join(
        f".toc-level-{level} {{ padding-left: {TOC_INDENT_PX * (level - 1)}px; }}\n" for level in range(1, 7)
    )
    return BASE_CSS + toc_levels + highlight_style_defs() + "\n"


def plan_units(files: Sequence[Path], single: bool) -> List[ConversionUnit]:
    if single:
        return [
            ConversionUnit(
                stem=COMBINED_STEM,
                title=COMBINED_TITLE,
                heading=COMBINED_HEADING,
                sources=list(files),
                combined=True,
            )
        ]

    units: List[ConversionUnit] = []
    seen = {}
    for path in files:
        if path.stem in seen:
            LOG.warning("Output name %s for %s collides with %s; the later file overwrites it", path.stem, path, seen[path.stem])
        seen[path.stem] = path
        units.append(ConversionUnit(stem=path.stem, title=path.stem, heading=path.stem, sources=[path]))
    return units


def collect_sources(unit: ConversionUnit) -> Tuple[str, List[HeadingRecord], List[ImageReference]]:
    """Read a unit's documents; combined units get a boundary heading and filename-qualified records."""
    if not unit.combined:
        source = unit.sources[0]
        text = read_markdown(source)
        return text, extract_headings(text), extract_image_references(text, source)

    parts: List[str] = []
    headings: List[HeadingRecord] = []
    references: List[ImageReference] = []
    for source in unit.sources:
        content = read_markdown(source)
        parts.append(f"## {source.name}\n\n{content}\n\n")
        headings.extend(qualify_headings(extract_headings(content), source.name))
        references.extend(extract_image_references(content, source))
    return "".join(parts), headings, references


def resolve_images(
    markup: str,
    references: Sequence[ImageReference],
    unit: ConversionUnit,
    config: ConversionConfig,
) -> str:
    if config.paginated:
        if references:
            LOG.info("Found %d images in %s", len(references), unit.stem)
        return embed_images(markup, references, config.remapper, unit.sources)
    new_paths = copy_linked_images(references, config.remapper, config.output_dir)
    return rewrite_image_sources(markup, [reference.raw_path for reference in references], new_paths)


def assemble_document(unit: ConversionUnit, config: ConversionConfig, renderer: MarkdownRenderer) -> AssembledDocument:
    text, headings, references = collect_sources(unit)
    body = renderer.render(text)
    body = inject_heading_ids(body, headings)
    body = resolve_images(body, references, unit, config)
    return AssembledDocument(
        title=unit.title,
        heading=unit.heading,
        css=generate_css(),
        toc_html=build_toc_html(headings, paginated=config.paginated),
        body_html=body,
    )


def finalize_unit(
    document: AssembledDocument,
    unit: ConversionUnit,
    config: ConversionConfig,
    pdf_renderer: Optional[PdfRenderer],
) -> Path:
    markup = document.to_html()
    if not config.paginated:
        target = config.output_dir / f"{unit.stem}.html"
        safe_write_text(target, markup)
        return target

    if pdf_renderer is None:
        raise RenderError("PDF output requested without a renderer")
    target = config.output_dir / f"{unit.stem}.pdf"
    if config.debug:
        debug_path = config.output_dir / f"debug-{unit.stem}.html"
        safe_write_text(debug_path, markup)
        LOG.debug("Debug HTML written to %s", debug_path)
    pdf_renderer.render(markup, target, base_url=config.output_dir)
    return target


def _process_units(
    units: Sequence[ConversionUnit],
    config: ConversionConfig,
    renderer: MarkdownRenderer,
    pdf_renderer: Optional[PdfRenderer],
) -> List[Path]:
    queue: Deque[ConversionUnit] = deque(units)
    outputs: List[Path] = []
    total = len(units)
    while queue:
        unit = queue.popleft()
        document = assemble_document(unit, config, renderer)
        target = finalize_unit(document, unit, config, pdf_renderer)
        outputs.append(target)
        LOG.info("Generated %s", target)
        if config.verbose:
            _log_progress(len(outputs), total, target.name)
    return outputs


def run_conversion_pipeline(
    config: ConversionConfig,
    *,
    files: Optional[Sequence[Path]] = None,
    renderer: Optional[MarkdownRenderer] = None,
) -> List[Path]:
    """Convert every discovered document and return the written output paths in order.

    Units run one at a time. Paginated runs share a single ``PdfRenderer``
    for the whole run; a render failure stops the remaining units while
    outputs already written stay on disk.
    """
    if files is None:
        files = discover_markdown_files(config.input_dir)
    if not files:
        raise NoInputError(f"No markdown files found in {config.input_dir}")
    if config.output_format not in OUTPUT_FORMATS:
        raise ValueError(f'Invalid format: {config.output_format}. Use "html" or "pdf".')

    config.output_dir.mkdir(parents=True, exist_ok=True)
    renderer = renderer or MarkdownRenderer()
    units = plan_units(files, config.single)

    if not config.paginated:
        return _process_units(units, config, renderer, None)

    LOG.info("Generating PDFs with paper size: %s", config.paper)
    with PdfRenderer(config.paper, config.render_timeout) as pdf_renderer:
        return _process_units(units, config, renderer, pdf_renderer)
