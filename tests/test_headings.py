from pathlib import Path

import pytest
from bs4 import BeautifulSoup

import md2doc.core as core


def _headings_by_id(markup: str) -> dict:
    soup = BeautifulSoup(markup, "html.parser")
    return {tag["id"]: tag for tag in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"]) if tag.get("id")}


def test_slugify_heading_examples():
    assert core.slugify_heading("Getting Started") == "getting-started"
    assert core.slugify_heading("Getting Started (guide.md)") == "getting-started-guide-md"
    assert core.slugify_heading("  --Hello,   World!--  ") == "hello-world"
    assert core.slugify_heading("Café Crème 2.0") == "cafe-creme-2-0"
    assert core.slugify_heading("C++ & Rust") == "c-rust"


def test_slugify_heading_is_deterministic():
    text = "Release Notes: v1.2 (Final)"
    assert core.slugify_heading(text) == core.slugify_heading(text) == "release-notes-v1-2-final"


def test_extract_headings_levels_text_and_ids():
    text = "# Title\n\nIntro\n\n## Getting Started  \n\n###### Deep\n####### Too deep\n#NoSpace\n"

    headings = core.extract_headings(text)

    assert [(h.level, h.text, h.anchor_id) for h in headings] == [
        (1, "Title", "title"),
        (2, "Getting Started", "getting-started"),
        (6, "Deep", "deep"),
    ]
    assert all(h.source_text == h.text for h in headings)


def test_extract_headings_includes_fenced_code_lines():
    text = "```bash\n# install dependencies\n```\n\n# Usage\n"

    headings = core.extract_headings(text)

    assert [h.text for h in headings] == ["install dependencies", "Usage"]


def test_qualify_headings_keeps_source_text():
    headings = core.extract_headings("## Getting Started\n")

    qualified = core.qualify_headings(headings, "guide.md")

    assert qualified[0].text == "Getting Started (guide.md)"
    assert qualified[0].anchor_id == "getting-started-guide-md"
    assert qualified[0].source_text == "Getting Started"
    assert headings[0].anchor_id == "getting-started"


def test_toc_has_one_entry_per_heading_in_source_order():
    headings = core.extract_headings("# A\n## B\n### C\n## D\n")

    toc = core.build_toc_html(headings)

    soup = BeautifulSoup(toc, "html.parser")
    items = soup.find_all("li")
    assert [li.get_text() for li in items] == ["A", "B", "C", "D"]
    assert [li["class"] for li in items] == [["toc-level-1"], ["toc-level-2"], ["toc-level-3"], ["toc-level-2"]]
    assert [li.a["href"] for li in items] == ["#a", "#b", "#c", "#d"]
    assert "page-break" not in toc


def test_toc_strips_bold_markers_only():
    headings = core.extract_headings("## **Bold** and *italic* `code`\n")

    toc = core.build_toc_html(headings)

    assert ">Bold and *italic* `code`</a>" in toc


def test_toc_appends_page_break_for_pagination():
    headings = core.extract_headings("# A\n")

    toc = core.build_toc_html(headings, paginated=True)

    assert toc.rstrip().endswith('<div class="page-break"></div>')


def test_css_indents_toc_levels_by_twenty_units():
    css = core.generate_css()

    for level in range(1, 7):
        assert f".toc-level-{level} {{ padding-left: {20 * (level - 1)}px; }}" in css


def test_inject_heading_ids_matches_level_and_text():
    markup = "<h1>Title</h1>\n<h2>Title</h2>\n<h2>Getting Started</h2>"
    headings = core.extract_headings("## Title\n## Getting Started\n")

    result = core.inject_heading_ids(markup, headings)

    soup = BeautifulSoup(result, "html.parser")
    assert soup.h1.get("id") is None
    h2s = soup.find_all("h2")
    assert [tag.get("id") for tag in h2s] == ["title", "getting-started"]


def test_inject_heading_ids_first_unconsumed_match_wins():
    markup = "<h2>Overview</h2><p>a</p><h2>Overview</h2>"
    headings = core.qualify_headings(core.extract_headings("## Overview\n"), "a.md") + core.qualify_headings(
        core.extract_headings("## Overview\n"), "b.md"
    )

    result = core.inject_heading_ids(markup, headings)

    h2s = BeautifulSoup(result, "html.parser").find_all("h2")
    assert [tag["id"] for tag in h2s] == ["overview-a-md", "overview-b-md"]


def test_inject_heading_ids_duplicate_text_collides_without_suffix():
    markup = "<h2>Setup</h2><h2>Setup</h2>"
    headings = core.extract_headings("## Setup\n## Setup\n")

    result = core.inject_heading_ids(markup, headings)

    h2s = BeautifulSoup(result, "html.parser").find_all("h2")
    assert [tag["id"] for tag in h2s] == ["setup", "setup"]


def test_inject_heading_ids_skips_unmatched_records():
    markup = "<h1>Usage</h1>"
    headings = core.extract_headings("```\n# comment\n```\n# Usage\n")

    result = core.inject_heading_ids(markup, headings)

    assert set(_headings_by_id(result)) == {"usage"}


def test_inject_heading_ids_compares_unescaped_text():
    markup = "<h2>Input &amp; Output</h2>"
    headings = core.extract_headings("## Input & Output\n")

    result = core.inject_heading_ids(markup, headings)

    assert "input-output" in _headings_by_id(result)


def test_discover_markdown_files_is_depth_first_files_first(tmp_path: Path):
    (tmp_path / "b").mkdir()
    (tmp_path / "a").mkdir()
    (tmp_path / "a" / "nested.md").write_text("# n\n", encoding="utf-8")
    (tmp_path / "b" / "other.md").write_text("# o\n", encoding="utf-8")
    (tmp_path / "z.md").write_text("# z\n", encoding="utf-8")
    (tmp_path / "readme.MD").write_text("# r\n", encoding="utf-8")
    (tmp_path / "notes.txt").write_text("skip", encoding="utf-8")

    files = core.discover_markdown_files(tmp_path)

    assert [p.relative_to(tmp_path).as_posix() for p in files] == ["readme.MD", "z.md", "a/nested.md", "b/other.md"]


def test_plan_units_warns_on_colliding_stems(tmp_path: Path, caplog, monkeypatch):
    monkeypatch.setattr(core.LOG, "propagate", True)
    first = tmp_path / "a" / "index.md"
    second = tmp_path / "b" / "index.md"

    with caplog.at_level("WARNING", logger="md2doc"):
        units = core.plan_units([first, second], single=False)

    assert [unit.stem for unit in units] == ["index", "index"]
    assert "collides" in caplog.text


def test_plan_units_single_mode_combines_everything(tmp_path: Path):
    files = [tmp_path / "one.md", tmp_path / "two.md"]

    units = core.plan_units(files, single=True)

    assert len(units) == 1
    assert units[0].stem == "combined"
    assert units[0].combined is True
    assert units[0].sources == files


def test_run_conversion_pipeline_rejects_empty_input(tmp_path: Path):
    config = core.ConversionConfig(input_dir=tmp_path, output_dir=tmp_path / "out")

    with pytest.raises(core.NoInputError):
        core.run_conversion_pipeline(config)
