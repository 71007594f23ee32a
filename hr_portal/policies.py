"""
Row-level authorization rules for the leave record store.

These rules are the enforcement point for who may read and change which
rows. They run inside the store session, below the workflow code, so a
caller that skips the service-tier role hints still cannot reach rows it
does not own. Anything not explicitly allowed is denied.
"""

import logging
from typing import Any

from hr_portal.auth import AuthContext
from hr_portal.errors import Unauthorized
from hr_portal.models import LEAVE_BALANCES_TABLE, LEAVE_REQUESTS_TABLE, LeaveStatus

logger = logging.getLogger(__name__)


def _deny(auth: AuthContext | None, action: str, table: str) -> Unauthorized:
    who = auth.user_id if auth else "anonymous"
    logger.warning("Policy denied %s on %s for %s", action, table, who)
    return Unauthorized(f"{action} on {table} denied")


class TablePolicy:
    """Default policy: nothing is allowed."""

    table = ""

    def select_filters(self, auth: AuthContext) -> dict[str, Any]:
        raise _deny(auth, "select", self.table)

    def check_insert(self, auth: AuthContext, record: dict[str, Any]) -> None:
        raise _deny(auth, "insert", self.table)

    def check_update(self, auth: AuthContext, patch: dict[str, Any]) -> None:
        raise _deny(auth, "update", self.table)

    def check_increment(self, auth: AuthContext, field: str) -> None:
        raise _deny(auth, "increment", self.table)


class LeaveRequestPolicy(TablePolicy):
    """
    - everyone reads their own requests, reviewers read all
    - requests are filed only by their requester, and only as pending
    - only reviewers update, and only the review columns
    """

    table = LEAVE_REQUESTS_TABLE
    REVIEW_COLUMNS = frozenset({"status", "reviewed_by", "reviewed_at"})

    def select_filters(self, auth: AuthContext) -> dict[str, Any]:
        if auth.is_reviewer:
            return {}
        return {"requester_id": auth.user_id}

    def check_insert(self, auth: AuthContext, record: dict[str, Any]) -> None:
        if record.get("requester_id") != auth.user_id:
            raise _deny(auth, "insert for another requester", self.table)
        if record.get("status") != LeaveStatus.PENDING.value:
            raise _deny(auth, "insert non-pending", self.table)

    def check_update(self, auth: AuthContext, patch: dict[str, Any]) -> None:
        if not auth.is_reviewer:
            raise _deny(auth, "update", self.table)
        if not set(patch) <= self.REVIEW_COLUMNS:
            raise _deny(auth, "update of non-review columns", self.table)
        if patch.get("reviewed_by", auth.user_id) != auth.user_id:
            raise _deny(auth, "update on behalf of another reviewer", self.table)


class LeaveBalancePolicy(TablePolicy):
    """
    - everyone reads their own balances, reviewers read all
    - rows are provisioned outside the application (no insert/update)
    - reviewers may increment used_days, which is how approvals consume balance
    """

    table = LEAVE_BALANCES_TABLE

    def select_filters(self, auth: AuthContext) -> dict[str, Any]:
        if auth.is_reviewer:
            return {}
        return {"requester_id": auth.user_id}

    def check_increment(self, auth: AuthContext, field: str) -> None:
        if not auth.is_reviewer or field != "used_days":
            raise _deny(auth, f"increment of {field}", self.table)


POLICIES: dict[str, TablePolicy] = {
    LEAVE_REQUESTS_TABLE: LeaveRequestPolicy(),
    LEAVE_BALANCES_TABLE: LeaveBalancePolicy(),
}


def policy_for(auth: AuthContext | None, table: str) -> TablePolicy:
    """Return the table's policy, refusing anonymous callers and unknown tables."""
    if auth is None:
        raise _deny(auth, "access", table)
    policy = POLICIES.get(table)
    if policy is None:
        raise _deny(auth, "access", table)
    return policy
