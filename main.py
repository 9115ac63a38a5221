#!/usr/bin/env python3
"""
AuditBoard -- 5S audit dashboard over a SharePoint list.

Offline mode: summarise a saved Microsoft Graph list-items payload without
signing in. The payload is either a Graph page ({"value": [...]}) or a bare
JSON list of items.

Usage:
  python main.py --file items.json
  python main.py --file items.json --area Warehouse --status Open
  python main.py --file items.json --search "forklift"
  python main.py --file items.json --format json
  python main.py --file items.json --format csv > audits.csv
  python main.py --file items.json --today 2024-03-01

Run the web dashboard with:  uvicorn asgi:app --reload
"""

import argparse
import sys
from datetime import date

from core.formatter import disable_color, print_summary, to_csv, to_json
from core.pipeline import build_view, criteria_from_params, load_payload_file, rows_from_payload


def _parse_today(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not a date in YYYY-MM-DD form")


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        prog="auditboard",
        description="Summarise 5S audit records from a saved SharePoint list export.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --file items.json
  python main.py --file items.json --five-s Seiri --format json
  python main.py --file items.json --format csv > audits.csv
        """,
    )
    parser.add_argument("--file", metavar="PATH", required=True, help="Saved Graph list-items payload (JSON)")
    parser.add_argument("--search", default="", help="Case-insensitive text search across the main fields")
    parser.add_argument("--area", default="", help="Only rows whose Area equals this value")
    parser.add_argument("--status", default="", help="Only rows whose Audit Status equals this value")
    parser.add_argument("--five-s", dest="five_s", default="", help="Only rows whose 5S equals this value")
    parser.add_argument(
        "--format",
        choices=["terminal", "json", "csv"],
        default="terminal",
        metavar="FORMAT",
        help="Output format: terminal (default), json, or csv",
    )
    parser.add_argument(
        "--today",
        type=_parse_today,
        default=None,
        metavar="YYYY-MM-DD",
        help="Anchor date for trends and follow-up stages (default: today)",
    )
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI color codes in terminal output")
    args = parser.parse_args(argv)

    if args.no_color:
        disable_color()

    try:
        payload = load_payload_file(args.file)
    except ValueError as e:
        print(f"  [!] {e}", file=sys.stderr)
        return 1

    rows = rows_from_payload(payload)
    criteria = criteria_from_params(args.search, args.area, args.status, args.five_s)
    view = build_view(rows, criteria, today=args.today)

    if args.format == "json":
        print(to_json(view))
    elif args.format == "csv":
        print(to_csv(view.rows), end="")
    else:
        print_summary(view)
    return 0


if __name__ == "__main__":
    sys.exit(main())
