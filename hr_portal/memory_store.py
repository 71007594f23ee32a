"""
In-process leave store for development and tests.

A single lock serialises every primitive, so the compare-and-set update and
the bounded increment are atomic with respect to each other exactly as they
would be inside the database.
"""

import copy
import logging
import threading
from collections.abc import Iterable
from typing import Any

from hr_portal.errors import BalanceUpdateError, NotFoundError, StorageError
from hr_portal.models import LEAVE_BALANCES_TABLE, LEAVE_REQUESTS_TABLE
from hr_portal.store import UPPER_BOUNDS, LeaveStore, OrderBy

logger = logging.getLogger(__name__)


def _matches(row: dict[str, Any], filters: dict[str, Any]) -> bool:
    return all(row.get(column) == value for column, value in filters.items())


class MemoryLeaveStore(LeaveStore):
    """Leave store backed by Python lists."""

    name = "MemoryLeaveStore"

    def __init__(self, balances: Iterable[dict[str, Any]] = (), **kwargs):
        super().__init__(**kwargs)
        self._lock = threading.Lock()
        self._tables: dict[str, list[dict[str, Any]]] = {
            LEAVE_REQUESTS_TABLE: [],
            LEAVE_BALANCES_TABLE: [dict(row) for row in balances],
        }
        logger.info(
            "MemoryLeaveStore initialized with %d balance rows",
            len(self._tables[LEAVE_BALANCES_TABLE]),
        )

    def _rows(self, table: str) -> list[dict[str, Any]]:
        try:
            return self._tables[table]
        except KeyError:
            raise StorageError(f"Unknown table: {table}") from None

    def _insert(self, table: str, record: dict[str, Any]) -> None:
        with self._lock:
            rows = self._rows(table)
            if "id" in record and any(row.get("id") == record["id"] for row in rows):
                raise StorageError(f"Duplicate id {record['id']} in {table}")
            rows.append(copy.deepcopy(record))

    def _select(self, table: str, filters: dict[str, Any], order_by: OrderBy) -> list[dict[str, Any]]:
        with self._lock:
            result = [copy.deepcopy(row) for row in self._rows(table) if _matches(row, filters)]

        if order_by:
            column, direction = order_by
            result.sort(key=lambda row: row[column], reverse=direction.lower() == "desc")
        return result

    def _update_single(
        self, table: str, filters: dict[str, Any], patch: dict[str, Any]
    ) -> dict[str, Any]:
        with self._lock:
            matched = [row for row in self._rows(table) if _matches(row, filters)]
            if not matched:
                raise NotFoundError(f"No row in {table} matches {filters}")
            if len(matched) > 1:
                raise StorageError(f"{len(matched)} rows in {table} match {filters}; expected one")
            matched[0].update(patch)
            return copy.deepcopy(matched[0])

    def _increment(
        self, table: str, key: dict[str, Any], field: str, delta: float
    ) -> dict[str, Any]:
        with self._lock:
            matched = [row for row in self._rows(table) if _matches(row, key)]
            if len(matched) != 1:
                raise BalanceUpdateError(
                    f"Expected one row in {table} for {key}, found {len(matched)}",
                    reason=BalanceUpdateError.NOT_FOUND,
                )
            row = matched[0]

            new_value = row[field] + delta
            bounded_field, bound_column, exempt_column = UPPER_BOUNDS.get(table, (None, None, None))
            if field == bounded_field and not row.get(exempt_column) and new_value > row[bound_column]:
                raise BalanceUpdateError(
                    f"{field} would reach {new_value}, above {bound_column}={row[bound_column]} for {key}",
                    reason=BalanceUpdateError.EXCEEDS_ALLOTMENT,
                )

            row[field] = new_value
            return copy.deepcopy(row)
