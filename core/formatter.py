"""
formatter.py -- Renders a DashboardView to the terminal, JSON or CSV.
"""

import csv
import io
import json
import os
import re
import sys
from dataclasses import asdict
from typing import Any, Optional

from .aggregate import display_text
from .models import AUDIT_FIELDS, DashboardView, GroupCount, LogicalRow, TrendPoint

W = 68  # output width
BAR_WIDTH = 24

# ---------------------------------------------------------------------------
# ANSI color control
# ---------------------------------------------------------------------------

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from a string."""
    return _ANSI_RE.sub("", text)


def _use_color() -> bool:
    """True if stdout is a TTY and NO_COLOR is not set (https://no-color.org)."""
    if os.environ.get("NO_COLOR"):
        return False
    if os.environ.get("FORCE_COLOR"):
        return True
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


_color_enabled: Optional[bool] = None  # None = auto-detect


def disable_color() -> None:
    """Force-disable color output (called when --no-color flag is set)."""
    global _color_enabled
    _color_enabled = False


def _color_active() -> bool:
    if _color_enabled is not None:
        return _color_enabled
    return _use_color()


STAGE_COLORS = {
    "Completed": "\033[92m",  # green
    "On Track": "\033[94m",  # blue
    "Overdue": "\033[91m",  # red
    "No Plan": "\033[2m",  # dim
}


def _reset() -> str:
    return "\033[0m" if _color_active() else ""


def _bold() -> str:
    return "\033[1m" if _color_active() else ""


def _stage_color(stage: str) -> str:
    return STAGE_COLORS.get(stage, "") if _color_active() else ""


# ---------------------------------------------------------------------------
# Layout helpers
# ---------------------------------------------------------------------------


def _bar(char: str = "═") -> str:
    return char * W


def _section(title: str) -> str:
    return f"\n  {_bold()}{title}{_reset()}\n  {'─' * (W - 2)}"


def _meter(count: int, largest: int) -> str:
    if largest <= 0 or count <= 0:
        return ""
    return "█" * max(1, round(count / largest * BAR_WIDTH))


def _print_counts(groups: list[GroupCount]) -> None:
    if not groups:
        print("    (no data)")
        return
    largest = max(g.count for g in groups)
    for g in groups:
        print(f"    {g.label[:26]:<26} {g.count:>5}  {_meter(g.count, largest)}")


def _print_trend(points: list[TrendPoint]) -> None:
    largest = max((p.count for p in points), default=0)
    for p in points:
        print(f"    {p.day.isoformat()}  {p.count:>4}  {_meter(p.count, largest)}")


# ---------------------------------------------------------------------------
# Terminal renderer
# ---------------------------------------------------------------------------


def print_summary(view: DashboardView) -> None:
    bold = _bold()
    reset = _reset()
    stats = view.stats

    print(f"\n{bold}{_bar()}{reset}")
    print(f"  {bold}5S AUDIT DASHBOARD -- {stats.total} audit(s){reset}")
    print(f"{bold}{_bar()}{reset}")

    avg = f"{stats.avg_score:.2f}" if stats.avg_score is not None else "N/A"
    print(f"    Total {stats.total}   Open {stats.open}   Closed {stats.closed}   Avg score {avg}")

    print(_section("BY AREA"))
    _print_counts(view.by_area)

    print(_section("BY STATUS"))
    _print_counts(view.by_status)

    print(_section("BY 5S"))
    _print_counts(view.by_five_s)

    print(_section("AVERAGE SCORE BY AREA"))
    if not view.avg_score_by_area:
        print("    (no data)")
    for g in view.avg_score_by_area:
        value = f"{g.average:.2f}" if g.average is not None else "  -"
        print(f"    {g.label[:26]:<26} {value:>6}  (n={g.count})")

    print(_section("AREA x STATUS"))
    if not view.area_status:
        print("    (no data)")
    for group in view.area_status:
        parts = ", ".join(f"{s.label} {s.count}" for s in group.segments)
        print(f"    {group.label[:26]:<26} {group.total:>5}  {parts}")

    print(_section("FOLLOW-UP STAGES"))
    for g in view.follow_up_stages:
        print(f"    {_stage_color(g.label)}{g.label:<26}{reset} {g.count:>5}")

    print(_section("AUDITS, LAST 14 DAYS"))
    _print_trend(view.audit_trend)

    print(_section("FOLLOW-UPS DUE, NEXT 14 DAYS"))
    _print_trend(view.follow_up_due)

    print(f"\n{_bar()}\n")


# ---------------------------------------------------------------------------
# JSON export
# ---------------------------------------------------------------------------


def view_to_dict(view: DashboardView) -> dict[str, Any]:
    """Plain-dict form of the view model: dates as ISO strings, rows flattened."""
    return {
        "stats": asdict(view.stats),
        "rows": [row.as_dict() for row in view.rows],
        "areas": list(view.areas),
        "statuses": list(view.statuses),
        "by_area": [asdict(g) for g in view.by_area],
        "by_status": [asdict(g) for g in view.by_status],
        "by_five_s": [asdict(g) for g in view.by_five_s],
        "avg_score_by_area": [asdict(g) for g in view.avg_score_by_area],
        "area_status": [asdict(g) for g in view.area_status],
        "audit_trend": [{"day": p.day.isoformat(), "count": p.count} for p in view.audit_trend],
        "follow_up_due": [{"day": p.day.isoformat(), "count": p.count} for p in view.follow_up_due],
        "follow_up_stages": [asdict(g) for g in view.follow_up_stages],
    }


def to_json(view: DashboardView) -> str:
    return json.dumps(view_to_dict(view), indent=2, default=str)


# ---------------------------------------------------------------------------
# CSV export
# ---------------------------------------------------------------------------

# Cells starting with these are evaluated as formulas by spreadsheet apps.
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def _sanitize_csv_cell(value: Any) -> str:
    """Neutralize spreadsheet formula injection by prefixing a tab."""
    text = display_text(value)
    if text.startswith(_FORMULA_PREFIXES):
        return "\t" + text
    return text


def to_csv(rows: list[LogicalRow]) -> str:
    """Render rows as CSV. Columns: id, Title, then every audit field."""
    headers = ["id", "Title", *AUDIT_FIELDS]

    buf = io.StringIO()
    writer = csv.writer(buf)
    writer.writerow(headers)
    for row in rows:
        writer.writerow([_sanitize_csv_cell(row.get(name)) for name in headers])
    return buf.getvalue()
