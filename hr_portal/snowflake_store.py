"""
Snowflake-backed leave store with circuit breaker protection.

All statements go through the Snowpark DataFrame API, so user input never
ends up in a SQL string. The compare-and-set and the balance increment are
each a single conditional ``UPDATE`` (``Table.update``); whether the row
qualified is decided by ``rows_updated``, inside the database.

Nothing that runs after an ``UPDATE`` has committed is allowed to turn the
call into a failure: a caller that sees an error must be able to assume the
change did not land.
"""

import functools
import logging
import operator
from contextlib import contextmanager
from typing import Any

from snowflake.connector.errors import Error as SnowflakeConnectorError
from snowflake.snowpark import Session
from snowflake.snowpark.exceptions import SnowparkClientException, SnowparkSQLException
from snowflake.snowpark.functions import col

from hr_portal.config import Settings
from hr_portal.errors import BalanceUpdateError, NotFoundError, StorageError
from hr_portal.store import UPPER_BOUNDS, LeaveStore, OrderBy

logger = logging.getLogger(__name__)

# Everything the Snowpark client or the underlying connector raises for a
# failed statement, a dropped connection or a closed session.
BACKEND_ERRORS = (SnowparkSQLException, SnowparkClientException, SnowflakeConnectorError)


def _condition(filters: dict[str, Any]):
    """AND together ``column == value`` for every filter."""
    return functools.reduce(operator.and_, [col(column) == value for column, value in filters.items()])


def _normalize(row) -> dict[str, Any]:
    # Unquoted identifiers come back upper-cased.
    return {key.lower(): value for key, value in row.as_dict().items()}


class SnowflakeLeaveStore(LeaveStore):
    """
    Leave store on Snowflake tables ``leave_requests`` and ``leave_balances``.

    The Snowpark session is created on first use. A failed connection
    surfaces as a ``StorageError``; there is no fallback to local data for
    writes.
    """

    name = "SnowflakeLeaveStore"

    def __init__(self, settings: Settings, snowpark_session: Session | None = None, **kwargs):
        super().__init__(**kwargs)
        self.settings = settings
        self._snowpark = snowpark_session

    def _initialize_session(self) -> Session:
        """Initialize Snowflake session."""
        connection_params = {
            "account": self.settings.snowflake_account,
            "user": self.settings.snowflake_user,
            "password": self.settings.snowflake_password,
            "warehouse": self.settings.snowflake_warehouse,
            "database": self.settings.snowflake_database,
            "schema": self.settings.snowflake_schema,
        }

        try:
            session = Session.builder.configs(connection_params).create()
        except Exception as e:
            logger.error(f"Failed to initialize Snowflake session: {e}")
            raise StorageError("Leave store is unreachable") from e

        logger.info("Snowflake session initialized successfully")
        return session

    @contextmanager
    def get_session(self):
        """Context manager translating Snowflake errors into StorageError."""
        if self._snowpark is None:
            self._snowpark = self._initialize_session()
        try:
            yield self._snowpark
        except BACKEND_ERRORS as e:
            logger.error(f"Snowflake error: {e}")
            raise StorageError("Leave store query failed") from e

    def _insert(self, table: str, record: dict[str, Any]) -> None:
        with self.get_session() as session:
            columns = list(record)
            df = session.create_dataframe([[record[c] for c in columns]], schema=columns)
            df.write.save_as_table(table, mode="append", column_order="name")

    def _select(self, table: str, filters: dict[str, Any], order_by: OrderBy) -> list[dict[str, Any]]:
        with self.get_session() as session:
            df = session.table(table)
            if filters:
                df = df.filter(_condition(filters))
            if order_by:
                column, direction = order_by
                df = df.sort(col(column).desc() if direction.lower() == "desc" else col(column).asc())
            return [_normalize(row) for row in df.collect()]

    def _update_single(
        self, table: str, filters: dict[str, Any], patch: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Read the row, then compare-and-set it.

        The returned record is the row as read plus ``patch``. Columns outside
        ``patch`` are not changed by the update, so no read follows the commit.
        """
        with self.get_session() as session:
            target = session.table(table)
            condition = _condition(filters)

            before = target.filter(condition).collect()
            if not before:
                raise NotFoundError(f"No row in {table} matches {filters}")
            if len(before) > 1:
                raise StorageError(f"{len(before)} rows in {table} match {filters}; expected one")

            result = target.update(patch, condition)
            if result.rows_updated == 0:
                # Someone else changed the row between the read and the update.
                raise NotFoundError(f"No row in {table} matches {filters}")
            if result.rows_updated > 1:
                logger.error("Single-row update on %s touched %d rows", table, result.rows_updated)
                raise StorageError(f"{result.rows_updated} rows in {table} matched {filters}")

            return {**_normalize(before[0]), **patch}

    def _increment(
        self, table: str, key: dict[str, Any], field: str, delta: float
    ) -> dict[str, Any]:
        with self.get_session() as session:
            target = session.table(table)
            condition = _condition(key)

            bounded_field, bound_column, exempt_column = UPPER_BOUNDS.get(table, (None, None, None))
            if field == bounded_field:
                condition = condition & (
                    (col(exempt_column) == True)  # noqa: E712
                    | (col(field) + delta <= col(bound_column))
                )

            result = target.update({field: col(field) + delta}, condition)

            if result.rows_updated == 1:
                return self._read_after_increment(target, key)
            if result.rows_updated > 1:
                raise StorageError(f"{result.rows_updated} rows in {table} matched {key}")

            if not target.filter(_condition(key)).collect():
                raise BalanceUpdateError(
                    f"No row in {table} for {key}", reason=BalanceUpdateError.NOT_FOUND
                )
            raise BalanceUpdateError(
                f"{field} + {delta} exceeds {bound_column} for {key}",
                reason=BalanceUpdateError.EXCEEDS_ALLOTMENT,
            )

    def _read_after_increment(self, target, key: dict[str, Any]) -> dict[str, Any]:
        """Best-effort read of an incremented row; the increment has committed either way."""
        try:
            rows = target.filter(_condition(key)).collect()
        except BACKEND_ERRORS as e:
            logger.warning("Increment on %s committed but read-back failed: %s", key, e)
            return dict(key)
        return _normalize(rows[0]) if rows else dict(key)

    def close(self):
        """Close Snowflake session."""
        if self._snowpark:
            self._snowpark.close()
            logger.info("Snowflake session closed")
