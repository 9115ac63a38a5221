"""
core/aggregate.py -- Pure aggregation over Logical Rows.

Everything here is a stateless function of (rows, criteria, today). No I/O,
no logging, no clock reads except the date.today() default when the caller
does not pass one. Views are recomputed from scratch on every filter change;
nothing is cached or persisted.

Dates are compared as local calendar dates. A date-only string such as
"2024-03-01" is read as that calendar day directly, never as UTC midnight,
so it cannot slide to the previous day west of Greenwich.
"""

import math
import re
from datetime import date, datetime, timedelta
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

from core.models import (
    FOLLOW_UP_STAGES,
    SEARCH_FIELDS,
    TREND_DAYS,
    DashboardStats,
    DashboardView,
    FilterCriteria,
    GroupAverage,
    GroupCount,
    LogicalRow,
    StackedGroup,
    TrendPoint,
)
from core.normalizer import is_meaningful

BLANK_LABEL = "(Blank)"
DEFAULT_TOP_N = 8

# Segment order for the area -> status breakdown.
STATUS_PRIORITY: tuple[str, ...] = ("Open", "In Progress", "Closed")

LabelNormalizer = Callable[[str], str]

_PLAIN_NUMBER_RE = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_EMBEDDED_NUMBER_RE = re.compile(r"[+-]?\d[\d.,]*")
_DATE_ONLY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_CLOSED_RE = re.compile(r"closed|done|complete", re.IGNORECASE)
_OPEN_RE = re.compile(r"^open$", re.IGNORECASE)
_IN_PROGRESS_RE = re.compile(r"progress|ongoing", re.IGNORECASE)

# Keys SharePoint uses when a lookup or person column is expanded.
_LABEL_KEYS = ("LookupValue", "displayName", "Title", "value")


# ---------------------------------------------------------------------------
# Value coercion
# ---------------------------------------------------------------------------


def display_text(value: Any) -> str:
    """Plain text for grouping and searching. Lookup dicts yield their label."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, Mapping):
        for key in _LABEL_KEYS:
            if is_meaningful(value.get(key)):
                return display_text(value[key])
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(t for t in (display_text(v) for v in value) if t)
    return str(value)


def _parse_localized(token: str) -> Optional[float]:
    token = token.rstrip(".,")
    sign = ""
    if token[:1] in ("+", "-"):
        sign, token = token[0], token[1:]
    has_dot, has_comma = "." in token, "," in token
    if has_dot and has_comma:
        # Whichever separator comes last is the decimal mark.
        if token.rfind(",") > token.rfind("."):
            token = token.replace(".", "").replace(",", ".")
        else:
            token = token.replace(",", "")
    elif has_comma:
        token = token.replace(",", ".") if token.count(",") == 1 else token.replace(",", "")
    elif token.count(".") > 1:
        token = token.replace(".", "")
    try:
        number = float(sign + token)
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def to_number(value: Any) -> Optional[float]:
    """Coerce a list value to a float, or None when it holds no number.

    Accepts numbers, plain numeric strings, comma-decimal strings ("4,5"),
    dot-thousands with comma-decimal ("1.234,56"), free text with an embedded
    number ("Score: 3", first match wins), a list (first element) and a
    mapping wrapping the scalar under "value". Booleans are not numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, Mapping):
        return to_number(value.get("value"))
    if isinstance(value, (list, tuple)):
        return to_number(value[0]) if value else None
    text = str(value).strip()
    if not text:
        return None
    if _PLAIN_NUMBER_RE.match(text):
        return float(text)
    match = _EMBEDDED_NUMBER_RE.search(text)
    if match is None:
        return None
    return _parse_localized(match.group(0))


def parse_local_date(value: Any) -> Optional[date]:
    """Return the local calendar date of value, or None if it is not a date.

    Date-only strings map straight to that day. Timestamps with an offset
    (including a trailing Z) are converted to the local timezone first; naive
    timestamps are taken as local already.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.astimezone().date() if value.tzinfo else value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    match = _DATE_ONLY_RE.match(text)
    if match:
        try:
            return date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        except ValueError:
            return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed.astimezone().date() if parsed.tzinfo else parsed.date()


def normalize_status(value: Any) -> str:
    """Collapse status synonyms: closed/done/complete -> Closed, open -> Open."""
    text = display_text(value).strip()
    if not text:
        return ""
    if _CLOSED_RE.search(text):
        return "Closed"
    if _OPEN_RE.match(text):
        return "Open"
    if _IN_PROGRESS_RE.search(text):
        return "In Progress"
    return text


def _label(value: Any, normalize: Optional[LabelNormalizer] = None) -> str:
    text = display_text(value).strip()
    if normalize is not None:
        text = normalize(text)
    return text or BLANK_LABEL


def _label_key(label: str) -> tuple[str, str]:
    return (label.casefold(), label)


# ---------------------------------------------------------------------------
# Filtering
# ---------------------------------------------------------------------------


def filter_rows(rows: Iterable[LogicalRow], criteria: Optional[FilterCriteria] = None) -> list[LogicalRow]:
    """Rows matching every equality filter and containing the search text."""
    rows = list(rows or [])
    if criteria is None:
        return rows
    search = criteria.search.strip().lower()
    wanted = {name: value.strip().lower() for name, value in criteria.equals.items()}

    result: list[LogicalRow] = []
    for row in rows:
        if any(display_text(row.get(name)).strip().lower() != value for name, value in wanted.items()):
            continue
        if search:
            haystack = " ".join(display_text(row.get(name)) for name in SEARCH_FIELDS).lower()
            if search not in haystack:
                continue
        result.append(row)
    return result


def distinct_values(rows: Iterable[LogicalRow], field_name: str) -> list[str]:
    values = {display_text(row.get(field_name)).strip() for row in rows or []}
    values.discard("")
    return sorted(values, key=_label_key)


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


def group_counts(
    rows: Iterable[LogicalRow],
    field_name: str,
    normalize: Optional[LabelNormalizer] = None,
    top_n: Optional[int] = DEFAULT_TOP_N,
) -> list[GroupCount]:
    """Count rows per label; highest count first, ties alphabetical, capped at top_n."""
    counts: dict[str, int] = {}
    for row in rows or []:
        label = _label(row.get(field_name), normalize)
        counts[label] = counts.get(label, 0) + 1
    ordered = sorted(counts.items(), key=lambda kv: (-kv[1], _label_key(kv[0])))
    if top_n is not None:
        ordered = ordered[:top_n]
    return [GroupCount(label=label, count=count) for label, count in ordered]


def group_averages(
    rows: Iterable[LogicalRow],
    group_field: str,
    value_field: str,
    normalize: Optional[LabelNormalizer] = None,
    top_n: Optional[int] = None,
) -> list[GroupAverage]:
    """Average value_field per group of group_field.

    Values that fail to_number() are left out of the average rather than
    counted as zero. A group with no numeric value reports average None and
    sorts after every group that has one.
    """
    totals: dict[str, list] = {}
    for row in rows or []:
        acc = totals.setdefault(_label(row.get(group_field), normalize), [0.0, 0])
        number = to_number(row.get(value_field))
        if number is None:
            continue
        acc[0] += number
        acc[1] += 1

    averages = [
        GroupAverage(label=label, average=(total / n) if n else None, count=n) for label, (total, n) in totals.items()
    ]
    averages.sort(key=lambda g: (g.average is None, -(g.average or 0.0), _label_key(g.label)))
    if top_n is not None:
        averages = averages[:top_n]
    return averages


def stacked_counts(
    rows: Iterable[LogicalRow],
    group_field: str,
    segment_field: str,
    priority: Optional[Sequence[str]] = None,
    top_n: Optional[int] = DEFAULT_TOP_N,
    normalize_group: Optional[LabelNormalizer] = None,
    normalize_segment: Optional[LabelNormalizer] = None,
) -> list[StackedGroup]:
    """Two-level breakdown: per group, the count of each segment.

    With a priority sequence, segments follow it first (unlisted segments come
    after every listed one); ties fall back to count descending, then label.
    Groups are ordered by total descending and capped at top_n.
    """
    groups: dict[str, dict[str, int]] = {}
    for row in rows or []:
        segments = groups.setdefault(_label(row.get(group_field), normalize_group), {})
        segment = _label(row.get(segment_field), normalize_segment)
        segments[segment] = segments.get(segment, 0) + 1

    rank = {name: i for i, name in enumerate(priority or ())}

    def segment_key(item: tuple[str, int]) -> tuple:
        name, count = item
        if rank:
            return (rank.get(name, len(rank)), -count, _label_key(name))
        return (-count, _label_key(name))

    stacked = [
        StackedGroup(
            label=label,
            total=sum(segments.values()),
            segments=tuple(
                GroupCount(label=name, count=count) for name, count in sorted(segments.items(), key=segment_key)
            ),
        )
        for label, segments in groups.items()
    ]
    stacked.sort(key=lambda g: (-g.total, _label_key(g.label)))
    if top_n is not None:
        stacked = stacked[:top_n]
    return stacked


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def trend_series(
    rows: Iterable[LogicalRow],
    date_field: str,
    today: Optional[date] = None,
    forward: bool = False,
    days: int = TREND_DAYS,
) -> list[TrendPoint]:
    """Dense day-bucketed counts over a fixed window anchored at today.

    Backward (history): the last point is today. Forward (due dates): the
    first point is today. Days without rows count zero; rows outside the
    window or without a parseable date are ignored.
    """
    today = today or date.today()
    if forward:
        window = [today + timedelta(days=i) for i in range(days)]
    else:
        window = [today - timedelta(days=days - 1 - i) for i in range(days)]
    counts = dict.fromkeys(window, 0)
    for row in rows or []:
        day = parse_local_date(row.get(date_field))
        if day in counts:
            counts[day] += 1
    return [TrendPoint(day=day, count=counts[day]) for day in window]


def follow_up_stage(plan_date: Any, completion_date: Any, today: Optional[date] = None) -> str:
    """Completed / No Plan / Overdue / On Track, compared on calendar dates only."""
    if is_meaningful(completion_date):
        return "Completed"
    plan = parse_local_date(plan_date)
    if plan is None:
        return "No Plan"
    if plan < (today or date.today()):
        return "Overdue"
    return "On Track"


def row_follow_up_stage(row: LogicalRow, today: Optional[date] = None) -> str:
    return follow_up_stage(row.get("Follow Up Plan Date"), row.get("Follow Up Date"), today)


# ---------------------------------------------------------------------------
# View model
# ---------------------------------------------------------------------------


def summarize_stats(rows: Iterable[LogicalRow]) -> DashboardStats:
    """Header counters: total, open (any non-closed status), closed, average score."""
    stats = DashboardStats()
    score_total = 0.0
    score_count = 0
    for row in rows or []:
        stats.total += 1
        status = display_text(row.get("Audit Status")).strip()
        if _CLOSED_RE.search(status):
            stats.closed += 1
        elif status:
            stats.open += 1
        score = to_number(row.get("Audit Score"))
        if score is not None:
            score_total += score
            score_count += 1
    stats.avg_score = score_total / score_count if score_count else None
    return stats


def build_dashboard(
    rows: Iterable[LogicalRow],
    criteria: Optional[FilterCriteria] = None,
    today: Optional[date] = None,
    top_n: int = DEFAULT_TOP_N,
) -> DashboardView:
    """Assemble every dashboard view over the rows that pass criteria.

    Filter choices (areas, statuses) come from the unfiltered rows so the
    dropdowns never shrink to the current selection.
    """
    all_rows = list(rows or [])
    today = today or date.today()
    filtered = filter_rows(all_rows, criteria or FilterCriteria())

    stage_counts = dict.fromkeys(FOLLOW_UP_STAGES, 0)
    pending: list[LogicalRow] = []
    for row in filtered:
        stage = row_follow_up_stage(row, today)
        stage_counts[stage] += 1
        if stage != "Completed":
            pending.append(row)

    return DashboardView(
        stats=summarize_stats(filtered),
        rows=filtered,
        areas=distinct_values(all_rows, "Area"),
        statuses=distinct_values(all_rows, "Audit Status"),
        by_area=group_counts(filtered, "Area", top_n=top_n),
        by_status=group_counts(filtered, "Audit Status", normalize=normalize_status, top_n=top_n),
        by_five_s=group_counts(filtered, "5S", top_n=top_n),
        avg_score_by_area=group_averages(filtered, "Area", "Audit Score", top_n=top_n),
        area_status=stacked_counts(
            filtered,
            "Area",
            "Audit Status",
            priority=STATUS_PRIORITY,
            top_n=top_n,
            normalize_segment=normalize_status,
        ),
        audit_trend=trend_series(filtered, "Audit Date", today=today),
        follow_up_due=trend_series(pending, "Follow Up Plan Date", today=today, forward=True),
        follow_up_stages=[GroupCount(label=stage, count=stage_counts[stage]) for stage in FOLLOW_UP_STAGES],
    )
