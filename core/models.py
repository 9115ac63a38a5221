"""
core/models.py -- Domain dataclasses for list records and dashboard views.

Pure data containers. Field resolution lives in core/normalizer.py and every
computation over rows lives in core/aggregate.py.
"""

from dataclasses import dataclass, field
from datetime import date
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Logical field set of an audit list row. Every Logical Row carries exactly
# these keys (plus id and Title), resolved or "".
AUDIT_FIELDS: tuple[str, ...] = (
    "Area",
    "Sub Area",
    "5S",
    "5S Category",
    "5S Item",
    "Audit Score",
    "Audit Status",
    "Audit Remark",
    "Audit Date",
    "Auditor",
    "Auditee",
    "Approvers",
    "Follow Up Plan Date",
    "Follow Up Date",
    "Follow Up Score",
    "Follow Up Remark",
    "Follow Up Status",
    "Reference Photo",
    "Created By",
    "Modified By",
)

# Fields scanned by the free-text search box.
SEARCH_FIELDS: tuple[str, ...] = (
    "Title",
    "Area",
    "Sub Area",
    "5S",
    "5S Category",
    "5S Item",
    "Auditor",
    "Auditee",
    "Approvers",
)

# Logical name -> storage key alias table for the production list.
# "Audit Score" and "Audit Remark" both point at field_7. That mapping came
# from the list owner and is kept as-is; override LIST_FIELD_MAP to correct it.
DEFAULT_FIELD_MAP: Mapping[str, str] = MappingProxyType(
    {
        "Sub Area": "field_1",
        "5S": "field_2",
        "Audit Score": "field_7",
        "Audit Remark": "field_7",
        "Follow Up Plan Date": "Follow_x0020_Up_x0020_Plan_x0020",
        "Follow Up Date": "field_10",
        "Follow Up Score": "field_12",
        "Follow Up Remark": "field_13",
        "Reference Photo": "Reference_x0020_Photo",
        "Audit Date": "field_17",
        "Created By": "Author",
        "Modified By": "Editor",
    }
)

FOLLOW_UP_STAGES: tuple[str, ...] = ("Completed", "Overdue", "On Track", "No Plan")

TREND_DAYS = 14


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RawListItem:
    """A list item as returned by the record source.

    fields maps backend storage keys (possibly _xHHHH_-escaped) to values.
    """

    id: str
    fields: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LogicalRow:
    """A record resolved onto AUDIT_FIELDS. Never mutated after creation."""

    id: str
    title: Any = ""
    values: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def get(self, name: str, default: Any = "") -> Any:
        if name == "id":
            return self.id
        if name == "Title":
            return self.title
        return self.values.get(name, default)

    def as_dict(self) -> dict[str, Any]:
        return {"id": self.id, "Title": self.title, **self.values}


ListItem = Union[RawListItem, LogicalRow]


# ---------------------------------------------------------------------------
# Filters and view model
# ---------------------------------------------------------------------------

MAX_EQUALITY_FILTERS = 3


@dataclass(frozen=True)
class FilterCriteria:
    """Free-text search plus up to three categorical equality filters.

    equals maps a logical field name to the required value; empty values are
    ignored. Comparison is case-insensitive.
    """

    search: str = ""
    equals: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        active = {k: v for k, v in dict(self.equals).items() if v}
        if len(active) > MAX_EQUALITY_FILTERS:
            raise ValueError(f"At most {MAX_EQUALITY_FILTERS} equality filters are supported, got {len(active)}.")
        object.__setattr__(self, "equals", MappingProxyType(active))


@dataclass(frozen=True)
class GroupCount:
    label: str
    count: int


@dataclass(frozen=True)
class GroupAverage:
    label: str
    average: Optional[float]  # None when no row in the group had a numeric value
    count: int  # rows that contributed to the average


@dataclass(frozen=True)
class StackedGroup:
    label: str
    total: int
    segments: tuple[GroupCount, ...] = ()


@dataclass(frozen=True)
class TrendPoint:
    day: date
    count: int


@dataclass
class DashboardStats:
    total: int = 0
    open: int = 0
    closed: int = 0
    avg_score: Optional[float] = None


@dataclass
class DashboardView:
    """Aggregate View Model -- a pure function of (rows, criteria, today)."""

    stats: DashboardStats
    rows: list[LogicalRow]
    areas: list[str]
    statuses: list[str]
    by_area: list[GroupCount]
    by_status: list[GroupCount]
    by_five_s: list[GroupCount]
    avg_score_by_area: list[GroupAverage]
    area_status: list[StackedGroup]
    audit_trend: list[TrendPoint]
    follow_up_due: list[TrendPoint]
    follow_up_stages: list[GroupCount]
