"""Command-line entry point for margo template management.

Reports and listings go to stdout; log records and error messages go to
stderr.  Exit codes:

    0  success (skipped, diverged and conflicting templates included)
    1  I/O failure, corrupt manifest, or any failed template in a report
    2  usage error (bad arguments, unknown template, invalid name or kind)
"""

import argparse
import json
import logging
import sys

from dotenv import load_dotenv
from pydantic import ValidationError

from margo import __version__
from margo.commands import (
    copy_example,
    diff_template,
    init_templates,
    list_examples,
    list_templates,
    refresh_templates,
    show_example,
)
from margo.config import load_settings
from margo.errors import (
    InvalidTemplateName,
    IoError,
    ManifestCorrupt,
    TemplateNotFound,
)
from margo.logger import setup_logging
from margo.templates.engine import REASON_UNTRACKED
from margo.templates.models import SyncReport, TemplateKind
from margo.templates.reporter import (
    format_sync_report,
    format_template_listing,
    ids_to_json,
    report_to_json,
)

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    """Build the ``margo`` argument parser."""
    parser = argparse.ArgumentParser(
        prog="margo",
        description="Manage margo's baseline and outcome variable templates",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # First run: create ~/.config/margo with the bundled templates
  margo init

  # Preview what a new release would change
  margo refresh --dry-run

  # Receive new defaults next to files you have edited
  margo refresh --sidecar

  # See how your copy differs from the bundled default
  margo diff outcome wellbeing

Templates you created yourself are never overwritten.
        """,
    )

    parser.add_argument(
        "--config-dir",
        help="Config directory (takes precedence over MARGO_CONFIG_DIR; "
        "default: ~/.config/margo)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (overrides MARGO_LOG_LEVEL)",
    )
    parser.add_argument(
        "--log-file",
        help="Also write log records to this file",
    )
    parser.add_argument(
        "--log-format",
        choices=("text", "json"),
        default="text",
        help="Log record format (default: text)",
    )
    parser.add_argument(
        "--reset-manifest",
        action="store_true",
        help="Discard a corrupt manifest and start with an empty sync "
        "history (the old file is kept as <manifest>.corrupt)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"margo version {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="COMMAND")
    sub.required = True

    p_list = sub.add_parser("list", help="List your templates and their status")
    p_list.add_argument(
        "kind", nargs="?", help="outcome(s) or baseline(s); default: both"
    )
    p_list.add_argument("--json", action="store_true", help="JSON output")

    p_examples = sub.add_parser(
        "examples", help="List or show the bundled templates"
    )
    p_examples.add_argument(
        "--show",
        nargs=2,
        metavar=("KIND", "NAME"),
        help="Print the content of one bundled template",
    )
    p_examples.add_argument("--json", action="store_true", help="JSON output")

    p_copy = sub.add_parser(
        "copy", help="Copy one bundled template into your config directory"
    )
    p_copy.add_argument("kind", help="outcome(s) or baseline(s)")
    p_copy.add_argument("name", help="Template name (without .toml)")
    p_copy.add_argument(
        "--force",
        action="store_true",
        help="Overwrite your copy if you have edited it",
    )
    p_copy.add_argument("--dry-run", action="store_true")
    p_copy.add_argument("--json", action="store_true", help="JSON output")

    p_init = sub.add_parser(
        "init", help="Create the config directory and bundled templates"
    )
    p_init.add_argument("--dry-run", action="store_true")
    p_init.add_argument("--json", action="store_true", help="JSON output")

    p_refresh = sub.add_parser(
        "refresh", help="Bring your templates up to date with this release"
    )
    mode = p_refresh.add_mutually_exclusive_group()
    mode.add_argument(
        "--force",
        action="store_true",
        help="Overwrite templates you have edited",
    )
    mode.add_argument(
        "--sidecar",
        action="store_true",
        help="Write new defaults next to templates you have edited",
    )
    p_refresh.add_argument("--dry-run", action="store_true")
    p_refresh.add_argument("--json", action="store_true", help="JSON output")

    p_diff = sub.add_parser(
        "diff", help="Show how your copy differs from the bundled default"
    )
    p_diff.add_argument("kind", help="outcome(s) or baseline(s)")
    p_diff.add_argument("name", help="Template name (without .toml)")

    return parser


# ---------------------------------------------------------------------------
# Output helpers
# ---------------------------------------------------------------------------


def _emit_report(report: SyncReport, as_json: bool) -> int:
    if as_json:
        print(json.dumps(report_to_json(report), indent=2))
    else:
        print(format_sync_report(report))
    return EXIT_FAILURE if report.errors else EXIT_OK


def _cmd_list(settings, args) -> int:
    rows = list_templates(settings, args.kind)
    if args.json:
        print(
            json.dumps(
                [row.model_dump(mode="json") for row in rows], indent=2
            )
        )
        return EXIT_OK

    kinds = (
        [TemplateKind.parse(args.kind)] if args.kind else list(TemplateKind)
    )
    groups = {
        kind.plural: [(r.name, r.status) for r in rows if r.kind == kind]
        for kind in kinds
    }
    hints = {
        kind.plural: "none (run 'margo init' or 'margo copy')"
        for kind in kinds
    }
    print(
        format_template_listing(
            f"Templates in {settings.config_dir}", groups, hints
        )
    )
    return EXIT_OK


def _cmd_examples(settings, args) -> int:
    if args.show:
        kind, name = args.show
        print(show_example(settings, kind, name), end="")
        return EXIT_OK

    ids = list_examples(settings)
    if args.json:
        print(json.dumps(ids_to_json(ids), indent=2))
        return EXIT_OK

    groups = {
        kind.plural: [(t.name, None) for t in ids if t.kind == kind]
        for kind in TemplateKind
    }
    print(format_template_listing("Bundled templates", groups))
    return EXIT_OK


def _cmd_copy(settings, args) -> int:
    report = copy_example(
        settings, args.kind, args.name, force=args.force, dry_run=args.dry_run
    )
    untracked = [r for r in report.skipped if r.reason == REASON_UNTRACKED]
    for result in untracked:
        print(
            f"{result.template_id}: {result.path} already exists and was "
            "not created by margo; remove or rename it to copy the example",
            file=sys.stderr,
        )
    return _emit_report(report, args.json)


def _cmd_init(settings, args) -> int:
    report = init_templates(settings, dry_run=args.dry_run)
    return _emit_report(report, args.json)


def _cmd_refresh(settings, args) -> int:
    report = refresh_templates(
        settings,
        force=args.force,
        sidecar=args.sidecar,
        dry_run=args.dry_run,
    )
    return _emit_report(report, args.json)


def _cmd_diff(settings, args) -> int:
    print(diff_template(settings, args.kind, args.name))
    return EXIT_OK


_COMMANDS = {
    "list": _cmd_list,
    "examples": _cmd_examples,
    "copy": _cmd_copy,
    "init": _cmd_init,
    "refresh": _cmd_refresh,
    "diff": _cmd_diff,
}


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> int:
    """Parse *argv*, run one command and return its exit code.

    argparse usage errors exit with status 2 directly.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    load_dotenv()

    try:
        settings = load_settings(
            config_dir=args.config_dir,
            log_file=args.log_file,
            recover_corrupt=args.reset_manifest,
        )
    except ValueError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE

    setup_logging(
        debug=args.debug,
        log_file=settings.log_file,
        debug_format=args.log_format,
        level=settings.log_level,
    )
    logger.debug("margo %s: %s", __version__, args.command)

    try:
        return _COMMANDS[args.command](settings, args)
    except (TemplateNotFound, InvalidTemplateName) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_USAGE
    except ValidationError as exc:
        # SyncOptions rejects --force together with --sidecar
        message = "; ".join(err["msg"] for err in exc.errors())
        print(f"Error: {message}", file=sys.stderr)
        return EXIT_USAGE
    except (ManifestCorrupt, IoError) as exc:
        logger.debug("Command failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return EXIT_FAILURE


def run() -> None:
    """Console-script entry point."""
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(130)


if __name__ == "__main__":
    run()
