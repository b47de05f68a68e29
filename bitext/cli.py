"""Command line interface for bitext."""

from __future__ import annotations

import argparse
import asyncio
import logging
import pathlib
import sys
from typing import Iterable, List, Optional

from .aligner import FAILED_TRANSLATION
from .configuration import BitextConfig, get_settings, require_provider_settings
from .errors import BitextError
from .providers import build_provider
from .renderers import default_renderer
from .session import DocumentSession, derive_output_name
from .structures import FormatKind


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bitext",
        description=(
            "Load a bilingual JSON, XLIFF, WebVTT or delimited text file, optionally "
            "machine-translate it, and export it in the same format."
        ),
    )
    parser.add_argument("input_file", help="Source (original language) file.")
    parser.add_argument(
        "-f",
        "--format",
        help="File format: json, xlf, vtt, txt, pdf or docx (default: from extension).",
    )
    parser.add_argument(
        "--target",
        help="Existing target-language file whose translations are loaded.",
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="Print the loaded segments and exit.",
    )
    parser.add_argument(
        "--translate",
        action="store_true",
        help="Send segments to the configured language model before export.",
    )
    parser.add_argument(
        "--select",
        help="Comma-separated zero-based row numbers to translate (default: all).",
    )
    parser.add_argument(
        "-l",
        "--target-language",
        help="Destination language (name or ISO-639 code).",
    )
    parser.add_argument(
        "-p",
        "--provider",
        help="Translation provider: openai, azure_openai, anthropic or echo.",
    )
    parser.add_argument(
        "-m",
        "--model",
        help="Provider-specific model identifier.",
    )
    parser.add_argument(
        "-o",
        "--output",
        help="Output path. Defaults to a timestamped name next to the input.",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Allow overwriting the output file if it already exists.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed progress information.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log complete provider requests and responses for troubleshooting.",
    )
    return parser


def configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s | %(name)s | %(message)s"))
    package_logger = logging.getLogger("bitext")
    package_logger.handlers[:] = [handler]
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def parse_selection(value: Optional[str]) -> List[int]:
    if not value:
        return []
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError as exc:
        raise BitextError(
            f"--select expects comma-separated row numbers, got '{value}'."
        ) from exc


def resolve_format(name: Optional[str], input_path: pathlib.Path) -> FormatKind:
    return FormatKind.parse(name or input_path.suffix)


def print_segments(session: DocumentSession) -> None:
    for index, segment in enumerate(session.segments):
        print(f"[{index}] {segment.key}")
        print(f"    original:    {segment.original}")
        print(f"    translation: {segment.translation}")


def validate_output(
    input_path: pathlib.Path,
    output_path: pathlib.Path,
    force_overwrite: bool,
) -> None:
    if input_path.resolve() == output_path.resolve():
        raise BitextError(
            "The output path matches the input file. Refusing to overwrite the source."
        )
    if output_path.exists() and not force_overwrite:
        raise BitextError(
            f"The output file {output_path} already exists; pass --force to overwrite."
        )


def execute(args: argparse.Namespace, settings: BitextConfig) -> int:
    input_path = pathlib.Path(args.input_file).expanduser()
    kind = resolve_format(args.format, input_path)
    target_language = args.target_language or settings.BITEXT_TARGET_LANGUAGE

    try:
        source = input_path.read_bytes()
        target_path = pathlib.Path(args.target).expanduser() if args.target else None
        target = target_path.read_bytes() if target_path else None
    except OSError as exc:
        raise BitextError(f"Could not read input: {exc}") from exc

    renderer = None
    if kind.is_block:
        renderer = default_renderer(
            kind, language=target_language, fonts_dir=settings.BITEXT_FONTS_DIR
        )
    session = DocumentSession(kind, renderer=renderer)
    session.load(
        kind,
        source,
        target,
        source_name=input_path.name,
        target_name=target_path.name if target_path else None,
    )

    if args.list:
        print_segments(session)
        return 0

    selection = parse_selection(args.select)
    if selection:
        session.select(selection)

    if args.translate:
        provider_name = require_provider_settings(settings, args.provider)
        provider = build_provider(
            settings,
            name=provider_name,
            model=args.model,
            debug=bool(args.debug_provider or settings.BITEXT_PROVIDER_DEBUG),
        )
        logger.debug("Translating with provider %s.", provider.name)
        report = asyncio.run(
            session.translate(
                provider,
                target_language=target_language,
                instructions=settings.BITEXT_SYSTEM_PROMPT,
            )
        )
        print(
            f"Translated {len(report.applied)} of {report.sent} row(s)"
            + (f"; {len(report.failed)} marked '{FAILED_TRANSLATION}'." if report.failed else ".")
        )

    result = session.export()
    if args.output:
        output_path = pathlib.Path(args.output).expanduser()
    else:
        filename = result.filename
        if filename == input_path.name:
            filename = derive_output_name(input_path.name, kind)
        output_path = input_path.with_name(filename)
    validate_output(input_path, output_path, force_overwrite=args.force)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(result.data)

    for note in result.warnings:
        print(f"Note: {note}")
    print(f"Saved {len(session.segments)} segment(s) to {output_path}")
    return 0


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    configure_logging(args.verbose)

    try:
        settings = get_settings()
        return execute(args, settings)
    except (BitextError, IndexError) as exc:
        print(exc)
        return 1
    except KeyboardInterrupt:
        print("Interrupted.")
        return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
