"""Material checkout / delivery / pickup grouping."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from techtruth.models import Coordinate, MaterialEvent, MaterialItem, MaterialKind
from techtruth.timeutils import parse_gps_timestamp

logger = logging.getLogger(__name__)


def _opt_int(value: Any, default: int = 0) -> int:
    if value is None or value == "":
        return default
    return int(value)


def _item_from_row(row: Mapping[str, Any]) -> MaterialItem | None:
    part_id = row.get("part_id")
    part_number = row.get("our_part_number") or row.get("part_number")
    description = row.get("item_description") or row.get("description")
    if not (part_id and part_number and description):
        return None
    return MaterialItem(
        part_id=str(part_id),
        part_number=str(part_number),
        description=str(description),
        quantity=_opt_int(row.get("item_quantity"), 1) or 1,
    )


def group_material_rows(rows: Iterable[Mapping[str, Any]]) -> tuple[list[MaterialEvent], int]:
    """Group per-item transaction rows into one event per transaction group.

    The first row of a group provides the header fields (time, totals, PO,
    delivery method); every row that has part details adds an item. Rows
    without a group or a parseable timestamp are skipped with a warning.

    Args:
        rows: Flat rows as exported by the inventory system. ``delivery_method``
            ("delivery" / "pickup") marks material requests; rows without it are
            warehouse checkouts.

    Returns:
        (events ordered by first appearance, skipped_row_count)
    """

    headers: dict[str, MaterialEvent] = {}
    items: dict[str, list[MaterialItem]] = {}
    skipped = 0
    for row in rows:
        try:
            group = str(row.get("transaction_group") or row.get("request_id") or "").strip()
            if not group:
                raise KeyError("transaction_group")
            if group not in headers:
                method = str(row.get("delivery_method") or "checkout").strip().lower()
                location = None
                if row.get("delivery_latitude") is not None and row.get("delivery_longitude") is not None:
                    location = Coordinate(float(row["delivery_latitude"]), float(row["delivery_longitude"]))
                headers[group] = MaterialEvent(
                    group_id=group,
                    kind=MaterialKind(method),
                    timestamp=parse_gps_timestamp(str(row["timestamp"])),
                    total_items=_opt_int(row.get("total_items")),
                    total_quantity=_opt_int(row.get("total_quantity")),
                    po_number=row.get("po_number") or None,
                    location=location,
                )
                items[group] = []
            item = _item_from_row(row)
        except (KeyError, ValueError, TypeError) as exc:
            logger.warning("Skipping material row %r: %s", row.get("id"), exc)
            skipped += 1
            continue
        if item is not None:
            items[group].append(item)

    events = [
        MaterialEvent(
            group_id=ev.group_id,
            kind=ev.kind,
            timestamp=ev.timestamp,
            total_items=ev.total_items,
            total_quantity=ev.total_quantity,
            po_number=ev.po_number,
            location=ev.location,
            items=tuple(items[ev.group_id]),
        )
        for ev in headers.values()
    ]
    return events, skipped
