from __future__ import annotations

import csv
import json
from pathlib import Path
from typing import Any, Dict, Iterable, List


def flatten_record(record: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """
    Flatten a SOQL record for tabular output:
    - drop the ``attributes`` metadata block
    - relationship fields become dotted columns (``Account.Name``)
    - child subquery results are reduced to their record count
    """
    out: Dict[str, Any] = {}
    for key, value in record.items():
        if key == "attributes":
            continue
        col = f"{prefix}{key}"
        if isinstance(value, dict) and "records" in value:
            out[col] = value.get("totalSize", len(value.get("records") or []))
        elif isinstance(value, dict):
            out.update(flatten_record(value, prefix=f"{col}."))
        else:
            out[col] = value
    return out


def fieldnames_for(rows: List[Dict[str, Any]]) -> List[str]:
    """Column names in first-seen order across all rows."""
    seen: Dict[str, None] = {}
    for row in rows:
        for k in row:
            seen.setdefault(k, None)
    return list(seen)


def _cell(value: Any) -> Any:
    if isinstance(value, str):
        return value.replace("\r\n", "\n").replace("\r", "\n")
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return value


def write_records_csv(path: Path, records: Iterable[Dict[str, Any]]) -> int:
    """Flatten SOQL records and write them as CSV; returns the row count.

    Columns are the union of every record's flattened fields, in first-seen
    order, so sparse relationship columns are never dropped.
    """
    rows = [flatten_record(r) for r in records]
    with path.open("w", newline="", encoding="utf-8") as f:
        w = csv.DictWriter(f, fieldnames=fieldnames_for(rows), restval="")
        w.writeheader()
        for row in rows:
            w.writerow({k: _cell(v) for k, v in row.items()})
    return len(rows)
