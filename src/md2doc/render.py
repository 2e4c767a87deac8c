"""Adapters around the Markdown renderer, the code highlighter and the PDF backend."""

from __future__ import annotations

import html
import logging
import queue
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Tuple

LOG = logging.getLogger("md2doc")

PAPER_SIZES = ("A4", "Letter", "Legal")
PAGE_MARGIN = "1cm"
DEFAULT_RENDER_TIMEOUT = 60.0
MARKDOWN_EXTENSIONS = ["tables", "fenced_code", "sane_lists"]
CODE_LANGUAGE_PREFIX = "language-"
CODE_BLOCK_CLASS = "hljs"

Highlighter = Callable[[str, Optional[str]], Optional[str]]


class RenderError(RuntimeError):
    """Paginated rendering failed for one output unit."""


class RenderTimeoutError(RenderError):
    """The rendering surface did not finish within the configured timeout."""


def parse_markup(markup: str) -> Any:
    try:
        from bs4 import BeautifulSoup  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"beautifulsoup4 not available: {exc}") from exc
    return BeautifulSoup(markup, "html.parser")


def pygments_highlight(code: str, language: Optional[str]) -> Optional[str]:
    """Highlight ``code`` with Pygments, or return None for an unknown language."""
    if not language:
        return None
    try:
        from pygments import highlight  # type: ignore
        from pygments.formatters import HtmlFormatter  # type: ignore
        from pygments.lexers import get_lexer_by_name  # type: ignore
        from pygments.util import ClassNotFound  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"pygments not available: {exc}") from exc

    try:
        lexer = get_lexer_by_name(language)
    except ClassNotFound:
        return None
    return highlight(code, lexer, HtmlFormatter(nowrap=True))


def highlight_style_defs(selector: str = f".{CODE_BLOCK_CLASS}") -> str:
    try:
        from pygments.formatters import HtmlFormatter  # type: ignore
    except Exception as exc:
        raise RuntimeError(f"pygments not available: {exc}") from exc
    return HtmlFormatter().get_style_defs(selector)


def _code_language(code_tag: Any) -> Optional[str]:
    for css_class in code_tag.get("class") or []:
        if css_class.startswith(CODE_LANGUAGE_PREFIX):
            return css_class[len(CODE_LANGUAGE_PREFIX) :] or None
    return None


class MarkdownRenderer:
    """Render Markdown text to an HTML fragment.

    Fenced code blocks are handed to ``highlighter`` as ``(code, language)``.
    A highlighter returning None, or raising, leaves the block as escaped
    plain text.
    """

    def __init__(self, highlighter: Optional[Highlighter] = pygments_highlight) -> None:
        self.highlighter = highlighter

    def render(self, text: str) -> str:
        try:
            import markdown  # type: ignore
        except Exception as exc:
            raise RuntimeError(f"markdown not available: {exc}") from exc

        body = markdown.markdown(text, extensions=MARKDOWN_EXTENSIONS, output_format="html")
        return self.highlight_code_blocks(body)

    def highlight_code_blocks(self, markup: str) -> str:
        """Highlight fenced blocks (``<pre><code class="language-*">``); other ``<pre>`` stays as written."""
        soup = parse_markup(markup)
        for pre in soup.find_all("pre"):
            code_tag = pre.find("code")
            if code_tag is None:
                continue
            language = _code_language(code_tag)
            if language is None:
                continue
            source = code_tag.get_text()
            highlighted: Optional[str] = None
            if self.highlighter is not None:
                try:
                    highlighted = self.highlighter(source, language)
                except Exception as exc:
                    LOG.warning("Highlighting failed for %s code block: %s", language, exc)
                    highlighted = None
            inner = highlighted if highlighted is not None else html.escape(source, quote=False)
            replacement = parse_markup(f'<pre class="{CODE_BLOCK_CLASS}"><code>{inner}</code></pre>').find("pre")
            pre.replace_with(replacement)
        return str(soup)


class PdfRenderer:
    """Single rendering surface shared by every paginated unit of a run.

    Each render runs on a daemon thread and hands its bytes back through a
    queue, so ``timeout`` bounds both the caller's wait and process exit. The
    PDF is written only after the render completes, so a timed-out unit never
    leaves a partial file behind.
    """

    def __init__(self, paper: str = "A4", timeout: float = DEFAULT_RENDER_TIMEOUT) -> None:
        if paper not in PAPER_SIZES:
            raise ValueError(f"Invalid paper size: {paper}. Valid options are: {', '.join(PAPER_SIZES)}")
        self.paper = paper
        self.timeout = timeout
        self._opened = False
        self._font_config: Any = None

    def __enter__(self) -> "PdfRenderer":
        self.open()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def open(self) -> None:
        try:
            from weasyprint.text.fonts import FontConfiguration  # type: ignore
        except Exception as exc:
            raise RuntimeError(f"weasyprint not available: {exc}") from exc
        self._font_config = FontConfiguration()
        self._opened = True

    def close(self) -> None:
        self._opened = False
        self._font_config = None

    def page_css(self) -> str:
        return f"@page {{ size: {self.paper}; margin: {PAGE_MARGIN}; }}"

    def render(self, markup: str, target: Path, base_url: Optional[Path] = None) -> Path:
        if not self._opened:
            raise RenderError("PDF renderer is not open")

        results: queue.Queue[Tuple[bool, Any]] = queue.Queue(maxsize=1)

        def _run() -> None:
            try:
                results.put((True, self._write_pdf_bytes(markup, base_url)))
            except Exception as exc:
                results.put((False, exc))

        worker = threading.Thread(target=_run, name=f"md2doc-pdf-{target.name}", daemon=True)
        worker.start()
        try:
            ok, value = results.get(timeout=self.timeout)
        except queue.Empty as exc:
            LOG.debug("Abandoning render thread %s", worker.name)
            raise RenderTimeoutError(f"PDF rendering timed out after {self.timeout:g}s: {target}") from exc
        if not ok:
            raise RenderError(f"PDF rendering failed for {target}: {value}") from value

        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(value)
        return target

    def _write_pdf_bytes(self, markup: str, base_url: Optional[Path]) -> bytes:
        from weasyprint import CSS, HTML  # type: ignore

        stylesheets: List[Any] = [CSS(string=self.page_css(), font_config=self._font_config)]
        document = HTML(string=markup, base_url=str(base_url) if base_url is not None else None)
        return document.write_pdf(stylesheets=stylesheets, font_config=self._font_config)
