"""
Leave record store contract.

``LeaveStore`` is a backend (in-memory or Snowflake) exposing four
primitives. Callers never use them directly: they open a ``StoreSession``
bound to an ``AuthContext``, and the session applies the row-level policies
before anything reaches the backend.

Backends must implement ``_update_single`` as one compare-and-set and
``_increment`` as one conditional in-place increment. Neither may be a
read followed by a write.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

from hr_portal.auth import AuthContext
from hr_portal.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from hr_portal.errors import BalanceUpdateError, HRPortalError, NotFoundError, StorageError
from hr_portal.models import LEAVE_BALANCES_TABLE
from hr_portal.observability import trace_span
from hr_portal.policies import policy_for

logger = logging.getLogger(__name__)

OrderBy = tuple[str, str] | None

# table -> (incremented column, upper bound column, column exempting the row from the bound)
UPPER_BOUNDS = {
    LEAVE_BALANCES_TABLE: ("used_days", "total_days", "unlimited"),
}


def is_backend_failure(exc: BaseException) -> bool:
    """Whether an exception means the backend is unhealthy (counts toward the breaker)."""
    if isinstance(exc, (NotFoundError, CircuitBreakerOpenError)):
        return False
    if isinstance(exc, BalanceUpdateError):
        return exc.reason == BalanceUpdateError.UNAVAILABLE
    if isinstance(exc, HRPortalError):
        return isinstance(exc, StorageError)
    return True


class LeaveStore(ABC):
    """Backend holding leave requests and balances."""

    name = "LeaveStore"

    def __init__(self, failure_threshold: int = 5, timeout: int = 60):
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=failure_threshold,
            timeout=timeout,
            name=f"{self.name}CircuitBreaker",
            is_failure=is_backend_failure,
        )

    def session(self, auth: AuthContext | None) -> StoreSession:
        """Open a policy-enforcing view of the store for one caller."""
        return StoreSession(self, auth)

    def call(self, operation: str, func, *args, **metadata) -> Any:
        with trace_span(f"store.{operation}", backend=self.name, **metadata):
            return self.circuit_breaker.call(func, *args)

    def get_circuit_breaker_state(self) -> dict:
        """Get circuit breaker state for monitoring."""
        return self.circuit_breaker.get_state()

    def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    def _insert(self, table: str, record: dict[str, Any]) -> None:
        """Append one row."""

    @abstractmethod
    def _select(self, table: str, filters: dict[str, Any], order_by: OrderBy) -> list[dict[str, Any]]:
        """Return rows whose columns equal every filter value."""

    @abstractmethod
    def _update_single(
        self, table: str, filters: dict[str, Any], patch: dict[str, Any]
    ) -> dict[str, Any]:
        """
        Atomically apply ``patch`` to the single row matching ``filters``.

        Raises:
            NotFoundError: No row matched at the moment of the update.
        """

    @abstractmethod
    def _increment(
        self, table: str, key: dict[str, Any], field: str, delta: float
    ) -> dict[str, Any]:
        """
        Atomically add ``delta`` to ``field`` on the row identified by ``key``.

        Raises:
            BalanceUpdateError: No such row, or the increment would break the
                table's upper bound.
        """


class StoreSession:
    """The store as seen by one authenticated caller."""

    def __init__(self, store: LeaveStore, auth: AuthContext | None):
        self._store = store
        self._auth = auth

    def current_identity(self) -> dict[str, str] | None:
        return self._auth.identity() if self._auth else None

    def insert(self, table: str, record: dict[str, Any]) -> str:
        policy_for(self._auth, table).check_insert(self._auth, record)
        self._store.call("insert", self._store._insert, table, dict(record), table=table)
        return record["id"]

    def select_where(
        self,
        table: str,
        filters: dict[str, Any] | None = None,
        order_by: OrderBy = None,
    ) -> list[dict[str, Any]]:
        scope = policy_for(self._auth, table).select_filters(self._auth)
        merged = self._merge_scope(filters or {}, scope)
        if merged is None:
            return []
        return self._store.call("select", self._store._select, table, merged, order_by, table=table)

    def update_where(
        self, table: str, filters: dict[str, Any], patch: dict[str, Any]
    ) -> dict[str, Any]:
        policy = policy_for(self._auth, table)
        policy.check_update(self._auth, patch)
        merged = self._merge_scope(filters, policy.select_filters(self._auth))
        if merged is None:
            raise NotFoundError(f"No visible row in {table} matches {filters}")
        return self._store.call(
            "update", self._store._update_single, table, merged, dict(patch), table=table
        )

    def atomic_increment(
        self, table: str, key: dict[str, Any], field: str, delta: float
    ) -> dict[str, Any]:
        policy_for(self._auth, table).check_increment(self._auth, field)
        return self._store.call(
            "increment", self._store._increment, table, dict(key), field, delta, table=table
        )

    @staticmethod
    def _merge_scope(filters: dict[str, Any], scope: dict[str, Any]) -> dict[str, Any] | None:
        """Combine caller filters with policy scope; None when they cannot both hold."""
        for column, value in scope.items():
            if column in filters and filters[column] != value:
                return None
        return {**filters, **scope}
