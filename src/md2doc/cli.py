"""Command-line interface for md2doc."""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from .version import __version__


def _get_usage() -> str:
    return (
        f"md2doc {__version__}\n"
        "Usage:\n"
        "  md2doc [--help] [--version|--ver]\n"
        "  md2doc [-d DIRECTORY] [-f html|pdf] [-s] [-o OUTPUT] [options]\n\n"
        "Options:\n"
        "  -d, --directory PATH         Directory containing Markdown files (default: ./markdowns)\n"
        "  -f, --format TYPE            Output format: html or pdf (default: html)\n"
        "  -s, --single                 Generate a single combined output instead of one per file\n"
        "  -o, --output PATH            Output directory (default: output)\n"
        "  -p, --paper SIZE             Paper size for PDF: A4, Letter, Legal (default: A4)\n"
        "  -m, --remap PAIRS            Comma-separated image path remappings 'from:to'\n"
        "  --timeout SECONDS            PDF rendering timeout per output (default: 60)\n"
        "  --verbose                    Verbose progress logs\n"
        "  --debug                      Debug logs + intermediate HTML for PDF output"
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument("--help", action="store_true")
    parser.add_argument("--version", action="store_true")
    parser.add_argument("--ver", action="store_true")
    parser.add_argument("-d", "--directory", default="./markdowns", help="Directory containing Markdown files")
    parser.add_argument("-f", "--format", default="html", help="Output format: html or pdf")
    parser.add_argument(
        "-s",
        "--single",
        action="store_true",
        help="Generate a single output file instead of separate files",
    )
    parser.add_argument("-o", "--output", default="output", help="Output directory")
    parser.add_argument("-p", "--paper", default="A4", help="Paper size for PDF: A4, Letter, Legal")
    parser.add_argument(
        "-m",
        "--remap",
        default="",
        help="Comma-separated list of path remappings in the format 'from:to'",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=60.0,
        help="Seconds to wait for each PDF render before failing (default: 60)",
    )
    parser.add_argument("--verbose", action="store_true", help="Verbose progress logs")
    parser.add_argument("--debug", action="store_true", help="Debug logs + extra artifacts")
    return parser


def _validate_args(args: argparse.Namespace, output_formats, paper_sizes) -> str | None:
    if args.format not in output_formats:
        return f'Invalid format: {args.format}. Use "html" or "pdf".'
    if args.format == "pdf" and args.paper not in paper_sizes:
        return f"Invalid paper size: {args.paper}. Valid options are: {', '.join(paper_sizes)}"
    if args.timeout is None or args.timeout <= 0:
        return "Invalid value for --timeout: must be > 0"
    return None


def main(argv: list[str] | None = None) -> int:
    if argv is None:
        argv = sys.argv[1:]

    parser = _build_parser()
    args, unknown = parser.parse_known_args(argv)
    if unknown:
        print(_get_usage())
        return 2

    if args.help:
        print(_get_usage())
        return 0

    if args.version or args.ver:
        print(__version__)
        return 0

    try:
        from md2doc import core, images
    except Exception as exc:
        print(f"Unable to import md2doc core: {exc}", file=sys.stderr)
        return 6

    core.setup_logging(args.verbose, args.debug)

    arg_error = _validate_args(args, core.OUTPUT_FORMATS, core.PAPER_SIZES)
    if arg_error:
        print(arg_error, file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    input_dir = Path(args.directory).expanduser().resolve()
    output_dir = Path(args.output).expanduser().resolve()

    if not input_dir.exists() or not input_dir.is_dir():
        print(f"Input directory not found: {input_dir}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS
    if output_dir.exists() and not output_dir.is_dir():
        print(f"Output path is not a directory: {output_dir}", file=sys.stderr)
        return core.EXIT_INVALID_ARGS

    files = core.discover_markdown_files(input_dir)
    if not files:
        print(f"No markdown files found in {args.directory}", file=sys.stderr)
        return core.EXIT_NO_INPUT
    core.LOG.info("Found %d markdown files in %s", len(files), args.directory)

    if args.remap:
        remapper = images.PathRemapper(images.parse_remap_option(args.remap))
    else:
        remapper = images.default_remapper()

    config = core.ConversionConfig(
        input_dir=input_dir,
        output_dir=output_dir,
        output_format=args.format,
        single=bool(args.single),
        paper=args.paper,
        remapper=remapper,
        render_timeout=float(args.timeout),
        verbose=bool(args.verbose),
        debug=bool(args.debug),
    )

    try:
        core.run_conversion_pipeline(config, files=files)
    except core.RenderError as exc:
        print(f"Error generating PDFs: {exc}", file=sys.stderr)
        return core.EXIT_RENDER_FAILED
    except RuntimeError as exc:
        print(str(exc), file=sys.stderr)
        return core.EXIT_CONVERSION_FAILED

    if args.verbose:
        print(f"{args.format.upper()} files generated in {args.output} directory")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
