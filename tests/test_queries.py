"""
Tests for request listings, balances and dashboards.
"""

from datetime import datetime, timedelta, timezone

import pytest

from hr_portal.errors import Unauthorized
from hr_portal.models import LeaveStatus, LeaveType
from hr_portal.reconciler import LeaveReconciler


def _candidate(day, leave_type="annual"):
    return {
        "leave_type": leave_type,
        "start_date": f"2024-07-{day:02d}",
        "end_date": f"2024-07-{day:02d}",
        "reason": "Personal errands day",
    }


@pytest.fixture
def ticking_reconciler(store):
    """Reconciler whose clock advances a minute per call."""
    moments = (datetime(2024, 6, 1, tzinfo=timezone.utc) + timedelta(minutes=i) for i in range(1000))
    return LeaveReconciler(store, clock=lambda: next(moments))


class TestListRequests:
    """Request listings."""

    def test_newest_first(self, ticking_reconciler, queries, employee):
        ids = [ticking_reconciler.submit(employee, _candidate(day)).id for day in (1, 2, 3)]

        listed = queries.list_requests(employee)

        assert [r.id for r in listed] == list(reversed(ids))

    def test_mine_excludes_other_requesters(self, reconciler, queries, employee, other_employee):
        reconciler.submit(employee, _candidate(1))
        reconciler.submit(other_employee, _candidate(2))

        listed = queries.list_requests(employee)

        assert {r.requester_id for r in listed} == {"EMP-001"}

    def test_reviewer_lists_all(self, reconciler, queries, employee, other_employee, admin):
        reconciler.submit(employee, _candidate(1))
        reconciler.submit(other_employee, _candidate(2))

        assert len(queries.list_requests(admin, scope="all")) == 2
        assert queries.list_requests(admin, scope="mine") == []

    def test_employee_cannot_list_all(self, queries, employee):
        with pytest.raises(Unauthorized):
            queries.list_requests(employee, scope="all")

    def test_unknown_scope(self, queries, employee):
        with pytest.raises(ValueError):
            queries.list_requests(employee, scope="team")

    def test_anonymous(self, queries):
        with pytest.raises(Unauthorized):
            queries.list_requests(None)

    def test_listing_reflects_review(self, reconciler, queries, employee, admin):
        request = reconciler.submit(employee, _candidate(1))
        reconciler.transition(admin, request.id, "rejected")

        (listed,) = queries.list_requests(employee)

        assert listed.status is LeaveStatus.REJECTED
        assert listed.reviewed_by == "ADM-001"


class TestListBalances:
    """Balance listings."""

    def test_defaults_to_caller_and_current_year(self, queries, employee):
        balances = queries.list_balances(employee)

        assert {b.leave_type for b in balances} == set(LeaveType)
        assert {(b.requester_id, b.year) for b in balances} == {("EMP-001", 2024)}

    def test_unlimited_has_no_remaining(self, queries, employee):
        unpaid = next(b for b in queries.list_balances(employee) if b.leave_type is LeaveType.UNPAID)

        assert unpaid.unlimited
        assert unpaid.remaining_days is None

    def test_explicit_year(self, queries, employee):
        assert {b.year for b in queries.list_balances(employee, year=2025)} == {2025}

    def test_employee_cannot_read_someone_elses(self, queries, employee):
        assert queries.list_balances(employee, requester_id="EMP-002") == []

    def test_reviewer_reads_anyones(self, queries, admin):
        balances = queries.list_balances(admin, requester_id="EMP-002")
        assert balances and all(b.requester_id == "EMP-002" for b in balances)

    def test_remaining_tracks_approvals(self, reconciler, queries, employee, admin):
        request = reconciler.submit(employee, _candidate(1, leave_type="sick"))
        reconciler.transition(admin, request.id, "approved")

        sick = next(b for b in queries.list_balances(employee) if b.leave_type is LeaveType.SICK)

        assert sick.used_days == 1
        assert sick.remaining_days == 9


class TestDashboard:
    """Role-based dashboards."""

    def test_employee_dashboard(self, reconciler, queries, employee):
        reconciler.submit(employee, _candidate(1))

        dashboard = queries.dashboard(employee)

        assert dashboard["title"] == "Employee Dashboard"
        assert dashboard["stats"] == {"available_leave_days": 40, "pending_requests": 1}
        cards = {c["leave_type"]: c for c in dashboard["balances"]}
        assert cards["annual"]["title"] == "Annual Leave"
        assert cards["annual"]["total"] == 20
        assert cards["unpaid"]["total"] is None
        assert cards["unpaid"]["unlimited"] is True
        assert len(dashboard["notifications"]) == 3

    def test_employee_dashboard_after_approval(self, reconciler, queries, employee, admin):
        request = reconciler.submit(
            employee,
            {"leave_type": "annual", "start_date": "2024-07-01", "end_date": "2024-07-05", "reason": "Summer holiday trip"},
        )
        reconciler.transition(admin, request.id, "approved")

        stats = queries.dashboard(employee)["stats"]

        assert stats == {"available_leave_days": 35, "pending_requests": 0}

    def test_admin_dashboard(self, reconciler, queries, employee, other_employee, admin):
        first = reconciler.submit(employee, _candidate(1))
        reconciler.submit(other_employee, _candidate(2))
        reconciler.transition(admin, first.id, "approved")

        dashboard = queries.dashboard(admin)

        assert dashboard["title"] == "Admin Dashboard"
        assert dashboard["stats"] == {
            "total_employees": 2,
            "pending_requests": 1,
            "resolved_this_year": 1,
        }
        names = {r["requester_name"] for r in dashboard["recent_requests"]}
        assert names == {"John Doe", "Jane Smith"}
        assert len(dashboard["notifications"]) == 4

    def test_recent_requests_capped_at_five(self, reconciler, queries, employee, admin):
        for day in range(1, 8):
            reconciler.submit(employee, _candidate(day))

        assert len(queries.dashboard(admin)["recent_requests"]) == 5

    def test_anonymous(self, queries):
        with pytest.raises(Unauthorized):
            queries.dashboard(None)
