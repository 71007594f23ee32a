"""
Read-only projections: request lists, balances and role-based dashboards.
"""

import logging
from collections.abc import Callable, Mapping
from datetime import date
from typing import Any

from data.hr_directory import get_leave_type_info, get_notifications
from hr_portal.auth import AuthContext
from hr_portal.errors import Unauthorized
from hr_portal.models import (
    LEAVE_BALANCES_TABLE,
    LEAVE_REQUESTS_TABLE,
    LeaveBalance,
    LeaveRequest,
    LeaveStatus,
)
from hr_portal.observability import trace_span
from hr_portal.store import LeaveStore

logger = logging.getLogger(__name__)

SCOPES = ("mine", "all")
NEWEST_FIRST = ("created_at", "desc")


class LeaveQueries:
    def __init__(
        self,
        store: LeaveStore,
        profiles: Mapping[str, Mapping[str, Any]],
        today: Callable[[], date] = date.today,
    ):
        self.store = store
        self.profiles = profiles
        self.today = today

    def list_requests(self, auth: AuthContext | None, scope: str = "mine") -> list[LeaveRequest]:
        """
        Leave requests, newest first.

        ``mine`` is the caller's own requests; ``all`` is every request and
        is for reviewers. The store's row policy narrows non-reviewers to
        their own rows regardless.
        """
        if scope not in SCOPES:
            raise ValueError(f"Unknown scope: {scope}")
        if auth is None:
            raise Unauthorized("Sign in to view leave requests")

        filters = {}
        if scope == "mine":
            filters["requester_id"] = auth.user_id
        elif not auth.is_reviewer:
            logger.warning("Non-reviewer %s asked for all leave requests", auth.user_id)
            raise Unauthorized("Only reviewers can list all requests")

        with trace_span("list_requests", user=auth.user_id, scope=scope):
            rows = self.store.session(auth).select_where(
                LEAVE_REQUESTS_TABLE, filters, order_by=NEWEST_FIRST
            )
        return [LeaveRequest.from_record(row) for row in rows]

    def list_balances(
        self,
        auth: AuthContext | None,
        requester_id: str | None = None,
        year: int | None = None,
    ) -> list[LeaveBalance]:
        """All balance rows for a requester (default: caller) and year (default: current)."""
        if auth is None:
            raise Unauthorized("Sign in to view leave balances")

        filters = {
            "requester_id": requester_id or auth.user_id,
            "year": year or self.today().year,
        }
        with trace_span("list_balances", user=auth.user_id, **filters):
            rows = self.store.session(auth).select_where(LEAVE_BALANCES_TABLE, filters)
        return [LeaveBalance.from_record(row) for row in rows]

    def dashboard(self, auth: AuthContext | None) -> dict[str, Any]:
        """Summary cards for the caller's role."""
        if auth is None:
            raise Unauthorized("Sign in to view the dashboard")

        if auth.is_reviewer:
            return self._reviewer_dashboard(auth)
        return self._employee_dashboard(auth)

    def _reviewer_dashboard(self, auth: AuthContext) -> dict[str, Any]:
        requests = self.list_requests(auth, scope="all")
        this_year = self.today().year
        employees = [p for p in self.profiles.values() if p.get("role") == "employee"]

        return {
            "role": auth.role.value,
            "title": "Admin Dashboard",
            "stats": {
                "total_employees": len(employees),
                "pending_requests": sum(1 for r in requests if r.status is LeaveStatus.PENDING),
                "resolved_this_year": sum(
                    1
                    for r in requests
                    if r.status.is_terminal and r.reviewed_at and r.reviewed_at.year == this_year
                ),
            },
            "recent_requests": [
                {
                    "id": r.id,
                    "requester_id": r.requester_id,
                    "requester_name": self.profiles.get(r.requester_id, {}).get("name", ""),
                    "leave_type": r.leave_type.value,
                    "status": r.status.value,
                }
                for r in requests[:5]
            ],
            "notifications": get_notifications(auth.role.value),
        }

    def _employee_dashboard(self, auth: AuthContext) -> dict[str, Any]:
        requests = self.list_requests(auth, scope="mine")
        balances = self.list_balances(auth)

        cards = []
        for balance in balances:
            info = get_leave_type_info(balance.leave_type.value) or {}
            cards.append(
                {
                    "leave_type": balance.leave_type.value,
                    "title": info.get("display_name", balance.leave_type.value.title()),
                    "used": balance.used_days,
                    "total": None if balance.unlimited else balance.total_days,
                    "remaining": balance.remaining_days,
                    "unlimited": balance.unlimited,
                }
            )

        return {
            "role": auth.role.value,
            "title": "Employee Dashboard",
            "stats": {
                "available_leave_days": sum(
                    b.remaining_days for b in balances if b.remaining_days is not None
                ),
                "pending_requests": sum(1 for r in requests if r.status is LeaveStatus.PENDING),
            },
            "balances": cards,
            "notifications": get_notifications(auth.role.value),
        }
