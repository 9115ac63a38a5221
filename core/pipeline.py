"""
core/pipeline.py -- Pure payload -> rows -> view pipeline.

No side effects. No print statements. Called by the CLI (main.py) with a
saved Graph payload, and by the web and API routes with the rows a
DashboardLoader fetched.
"""

import json
from datetime import date
from pathlib import Path
from typing import Any, Mapping, Optional

from core.aggregate import build_dashboard
from core.models import DEFAULT_FIELD_MAP, DashboardView, FilterCriteria, LogicalRow
from core.normalizer import parse_list_items, to_logical_rows


def criteria_from_params(
    search: Optional[str] = None,
    area: Optional[str] = None,
    status: Optional[str] = None,
    five_s: Optional[str] = None,
) -> FilterCriteria:
    """Filter criteria from the dashboard's search box and three dropdowns."""
    return FilterCriteria(
        search=(search or "").strip(),
        equals={"Area": area or "", "Audit Status": status or "", "5S": five_s or ""},
    )


def payload_items(payload: Any) -> list:
    """Accept a Graph page ({"value": [...]}) or a bare list of items.

    Raises ValueError for anything else.
    """
    if isinstance(payload, Mapping):
        payload = payload.get("value")
    if not isinstance(payload, list):
        raise ValueError('Expected a JSON list of items or an object with a "value" list.')
    return payload


def load_payload_file(path: str) -> list:
    """Read a saved Graph payload from disk.

    Raises ValueError if the path is not a regular file or does not hold a
    usable payload.
    """
    file_path = Path(path).resolve()
    if not file_path.is_file():
        raise ValueError(f"'{path}' is not a readable file.")
    try:
        payload = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Could not read '{path}': {e}") from e
    return payload_items(payload)


def rows_from_payload(payload: Any, field_map: Optional[Mapping[str, Any]] = None) -> list[LogicalRow]:
    items = parse_list_items(payload_items(payload))
    return to_logical_rows(items, DEFAULT_FIELD_MAP if field_map is None else field_map)


def build_view(
    rows: list[LogicalRow],
    criteria: Optional[FilterCriteria] = None,
    today: Optional[date] = None,
    top_n: int = 8,
) -> DashboardView:
    return build_dashboard(rows, criteria, today=today, top_n=top_n)
