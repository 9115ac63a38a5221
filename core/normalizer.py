"""
core/normalizer.py -- Resolve backend list fields onto the logical field set.

SharePoint stores column names as internal keys: spaces and punctuation are
escaped as _xHHHH_ (so "Follow Up" becomes "Follow_x0020_Up"), long names are
truncated at 32 characters, and duplicate display names get a numeric suffix
("Area0", "Area1"). A truncated escape such as the trailing "_x0020" of
"Follow_x0020_Up_x0020_Plan_x0020" has no closing underscore and stays
literal, so normalize_key() gives "followupplanx0020"; such fields are
reached through the alias table.

resolve_field() maps a human-readable logical name back to whichever storage
key holds it.

Pipeline:
  Graph payload -> parse_list_items() -> list[RawListItem | LogicalRow]
  -> to_logical_rows() -> list[LogicalRow] -> core.aggregate

to_logical_rows() is the only place a raw record becomes a logical row.
Nothing in this module raises on malformed input.
"""

import re
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from core.models import AUDIT_FIELDS, ListItem, LogicalRow, RawListItem

_ESCAPE_RE = re.compile(r"_x([0-9A-Fa-f]{4})_")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

AliasSpec = Union[str, Sequence[str], None]


def decode_key(key: Any) -> str:
    """Replace every _xHHHH_ escape with the character it encodes."""
    return _ESCAPE_RE.sub(lambda m: chr(int(m.group(1), 16)), str(key))


def normalize_key(key: Any) -> str:
    """Decoded, lowercased, with every non-alphanumeric character removed."""
    return _NON_ALNUM_RE.sub("", decode_key(key).lower())


def is_meaningful(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def _alias_keys(alias: AliasSpec) -> list[str]:
    if not alias:
        return []
    if isinstance(alias, str):
        return [alias]
    return [str(a) for a in alias]


def _suffix_match(fields: Mapping[str, Any], desired: str) -> Optional[str]:
    """Storage key whose normalized form is desired + digits, shortest suffix first."""
    best_key: Optional[str] = None
    best_suffix: Optional[str] = None
    for key in fields:
        normalized = normalize_key(key)
        if not normalized.startswith(desired):
            continue
        suffix = normalized[len(desired) :]
        if not suffix.isdigit():
            continue
        if best_suffix is None or (len(suffix), int(suffix)) < (len(best_suffix), int(best_suffix)):
            best_key, best_suffix = key, suffix
    return best_key


def resolve_field(fields: Optional[Mapping[str, Any]], logical_name: str, aliases: AliasSpec = None) -> Any:
    """Return the value stored for logical_name, or "" when no key matches.

    Resolution order:
      1. Normalized match: first key (iteration order) whose normalized form
         equals the normalized logical name.
      2. Alias keys from the field map, tried verbatim; only a meaningful value
         (non-None, non-blank string) is accepted.
      3. Numeric-suffix fallback: keys normalizing to name + digits, preferring
         the shortest suffix.
      4. Exact (non-normalized) key lookup.
    """
    if not fields or not isinstance(fields, Mapping):
        return ""
    desired = normalize_key(logical_name)

    if desired:
        for key, value in fields.items():
            if normalize_key(key) == desired:
                return value

    for key in _alias_keys(aliases):
        if key in fields and is_meaningful(fields[key]):
            return fields[key]

    if desired:
        suffixed = _suffix_match(fields, desired)
        if suffixed is not None:
            return fields[suffixed]

    if logical_name in fields:
        return fields[logical_name]
    return ""


# ---------------------------------------------------------------------------
# Ingestion boundary
# ---------------------------------------------------------------------------


def parse_list_items(payload: Iterable[Any]) -> list[ListItem]:
    """Discriminate raw payload entries into RawListItem or LogicalRow.

    An entry with a "fields" mapping is a Graph list item. Any other mapping
    is treated as an already-mapped row (e.g. an exported dashboard file).
    Non-mapping entries are skipped.
    """
    items: list[ListItem] = []
    for entry in payload or []:
        if isinstance(entry, (RawListItem, LogicalRow)):
            items.append(entry)
            continue
        if not isinstance(entry, Mapping):
            continue
        item_id = "" if entry.get("id") is None else str(entry.get("id"))
        fields = entry.get("fields")
        if isinstance(fields, Mapping):
            items.append(RawListItem(id=item_id, fields=dict(fields)))
        else:
            values = {name: entry.get(name, "") for name in AUDIT_FIELDS}
            items.append(LogicalRow(id=item_id, title=entry.get("Title", ""), values=values))
    return items


def to_logical_row(item: RawListItem, field_map: Optional[Mapping[str, AliasSpec]] = None) -> LogicalRow:
    field_map = field_map or {}
    values = {name: resolve_field(item.fields, name, field_map.get(name)) for name in AUDIT_FIELDS}
    title = resolve_field(item.fields, "Title", field_map.get("Title"))
    return LogicalRow(id=item.id, title=title, values=values)


def to_logical_rows(
    items: Iterable[ListItem], field_map: Optional[Mapping[str, AliasSpec]] = None
) -> list[LogicalRow]:
    """Translate every RawListItem; LogicalRow entries pass through untouched."""
    rows: list[LogicalRow] = []
    for item in items or []:
        if isinstance(item, LogicalRow):
            rows.append(item)
        else:
            rows.append(to_logical_row(item, field_map))
    return rows
