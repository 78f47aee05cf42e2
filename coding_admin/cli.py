"""Command-line front end for the coding review workflow.

Authentication comes from the environment: either ``BYPASS_AUTH=true`` or a
pre-issued ``API_BEARER_TOKEN``.  Every command prints JSON on success and
``error: <message>`` on stderr with exit status 1 on failure.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any, Optional, Sequence

import requests
from pydantic import BaseModel

from coding_admin.app import CodingAdmin, build_admin
from coding_admin.errors import CodingAdminError
from coding_admin.logging_config import configure_logging
from coding_admin.models import EpisodeDraft, EpisodeFilters


# Commands that fetch the episode list with the filter options first.
LISTING_COMMANDS = ("list", "submit", "approve", "reject")


def _filter_options() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    parent.add_argument("--status", choices=["0", "1", "2", "3"], help="Draft=0, Submitted=1, Approved=2, Rejected=3")
    parent.add_argument("--from", dest="from_date", help="Admission date lower bound (YYYY-MM-DD)")
    parent.add_argument("--to", dest="to_date", help="Admission date upper bound (YYYY-MM-DD)")
    parent.add_argument("--page", type=int, default=1)
    parent.add_argument("--page-size", type=int, default=25)
    return parent


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="coding-admin",
        description="Review machine-suggested clinical codes and move episodes through review.",
    )
    filters = _filter_options()
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("list", parents=[filters], help="List episodes")

    for name in ("suggest", "create"):
        cmd = sub.add_parser(name, help=f"{name.capitalize()} from an admission note")
        cmd.add_argument("note", help="Path to the admission note, or '-' for stdin")
        cmd.add_argument("--patient-name", default="John Smith")
        cmd.add_argument("--nhs-number", default="9999999999")
        cmd.add_argument("--specialty", default="Respiratory Medicine")

    lookup = "The episode must be on the page selected by the filter options (default: page 1 of 25)."
    sub.add_parser(
        "submit", parents=[filters], help="Submit a draft episode", description=lookup
    ).add_argument("episode_id")
    for name, default in (("approve", "Looks good"), ("reject", "Needs more detail")):
        cmd = sub.add_parser(
            name, parents=[filters], help=f"{name.capitalize()} a submitted episode", description=lookup
        )
        cmd.add_argument("episode_id")
        cmd.add_argument("--notes", default=default)

    sub.add_parser("diff", help="Show the latest code diff").add_argument("episode_id")
    sub.add_parser("revert", help="Revert an episode to the old codes of its diff").add_argument("episode_id")

    upload = sub.add_parser("compare-upload", help="Compare coder codes with system codes")
    upload.add_argument("file", help="Note file (.txt, .csv, .json, .docx, .pdf)")
    upload.add_argument("--codes", help="Coder codes as JSON or CSV text, or @path to read them from a file")

    query = sub.add_parser("query", help="Send a clinician query")
    query.add_argument("episode_id")
    query.add_argument("--to")
    query.add_argument("--subject")
    query.add_argument("--body")

    export = sub.add_parser("export-url", help="Print an export download link")
    export.add_argument("format", choices=["csv", "json"])
    return parser


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json", by_alias=True)
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    return value


def _read_text(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    return Path(source).read_text(encoding="utf-8")


def _draft(args: argparse.Namespace) -> EpisodeDraft:
    return EpisodeDraft(
        source_text=_read_text(args.note),
        patient_name=args.patient_name,
        nhs_number=args.nhs_number,
        specialty=args.specialty,
    )


def run(admin: CodingAdmin, args: argparse.Namespace) -> Any:
    if args.command == "export-url":
        return {"url": admin.api.export_url(args.format)}

    workflow = admin.workflow
    if args.command in LISTING_COMMANDS:
        workflow.filters = EpisodeFilters.model_validate(
            {
                "status": args.status,
                "from_date": args.from_date,
                "to_date": args.to_date,
                "page": args.page,
                "page_size": args.page_size,
            }
        )
        workflow.refresh()
        if workflow.error:
            raise CodingAdminError(workflow.error)

    if args.command == "list":
        return {"total": workflow.total, "items": _jsonable(workflow.episodes)}
    if args.command == "suggest":
        return workflow.suggest(_draft(args))
    if args.command == "create":
        return workflow.create(_draft(args))
    if args.command == "submit":
        workflow.submit(args.episode_id)
    elif args.command == "approve":
        workflow.approve(args.episode_id, args.notes)
    elif args.command == "reject":
        workflow.reject(args.episode_id, args.notes)
    elif args.command == "diff":
        return _jsonable(admin.diffs.load_diff(args.episode_id))
    elif args.command == "revert":
        admin.diffs.load_diff(args.episode_id)
        admin.diffs.revert()
        return {"reverted": args.episode_id}
    elif args.command == "compare-upload":
        path = Path(args.file)
        codes = args.codes
        if codes and codes.startswith("@"):
            codes = _read_text(codes[1:])
        return _jsonable(admin.diffs.compare_upload(path.name, path.read_bytes(), codes))
    elif args.command == "query":
        return {"message": admin.queries.create_query(args.episode_id, args.to, args.subject, args.body)}

    return {"total": workflow.total, "items": _jsonable(workflow.episodes)}


def main(argv: Optional[Sequence[str]] = None) -> int:
    configure_logging()
    args = build_parser().parse_args(argv)
    try:
        admin = build_admin()
        result = run(admin, args)
    except (CodingAdminError, requests.RequestException, ValueError, OSError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
