"""
Leave request lifecycle and balance reconciliation.

State machine::

    pending --approve--> approved   (terminal)
    pending --reject---> rejected   (terminal)

Approval is a two-step saga. Step one, the status change, is a
compare-and-set in the store and is the commit point. Step two adds the
request's inclusive day count to the matching balance with an atomic
increment. If step two fails the approval stands; the increment is queued
in ``BalanceSyncQueue`` and retried out of band by a reviewer.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import OrderedDict
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from hr_portal.auth import AuthContext
from hr_portal.errors import InvalidTransition, NotFoundError, StorageError, Unauthorized
from hr_portal.models import (
    LEAVE_BALANCES_TABLE,
    LEAVE_REQUESTS_TABLE,
    LeaveRequest,
    LeaveStatus,
    LeaveType,
)
from hr_portal.observability import trace_span
from hr_portal.store import LeaveStore, StoreSession
from hr_portal.validation import validate_leave_request

logger = logging.getLogger(__name__)

BALANCE_YEAR_POLICIES = ("start_date", "approval")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PendingBalanceUpdate:
    """An approval whose balance increment has not been applied yet."""

    request_id: str
    requester_id: str
    leave_type: LeaveType
    year: int
    days: int
    last_error: str
    attempts: int = 1
    queued_at: datetime = field(default_factory=_utcnow)

    @property
    def key(self) -> dict[str, Any]:
        return {
            "requester_id": self.requester_id,
            "leave_type": self.leave_type.value,
            "year": self.year,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "request_id": self.request_id,
            "requester_id": self.requester_id,
            "leave_type": self.leave_type.value,
            "year": self.year,
            "days": self.days,
            "last_error": self.last_error,
            "attempts": self.attempts,
            "queued_at": self.queued_at.isoformat(),
        }


class BalanceSyncQueue:
    """
    Increments waiting for retry, one per approved request.

    Retrying claims entries (removes them) before touching the store, so two
    concurrent retries can never apply the same increment twice.
    """

    def __init__(self):
        self._entries: OrderedDict[str, PendingBalanceUpdate] = OrderedDict()
        self._lock = threading.Lock()

    def add(self, entry: PendingBalanceUpdate) -> None:
        with self._lock:
            self._entries[entry.request_id] = entry

    def get(self, request_id: str) -> PendingBalanceUpdate | None:
        with self._lock:
            return self._entries.get(request_id)

    def claim_all(self) -> list[PendingBalanceUpdate]:
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
            return entries

    def snapshot(self) -> list[PendingBalanceUpdate]:
        with self._lock:
            return list(self._entries.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class LeaveReconciler:
    """Owns request submission, status transitions and the balance side effect."""

    def __init__(
        self,
        store: LeaveStore,
        *,
        balance_year_policy: str = "start_date",
        reject_past_start_dates: bool = False,
        clock: Callable[[], datetime] = _utcnow,
        sync_queue: BalanceSyncQueue | None = None,
    ):
        if balance_year_policy not in BALANCE_YEAR_POLICIES:
            raise ValueError(f"Unknown balance year policy: {balance_year_policy}")

        self.store = store
        self.balance_year_policy = balance_year_policy
        self.reject_past_start_dates = reject_past_start_dates
        self.clock = clock
        self.sync_queue = sync_queue if sync_queue is not None else BalanceSyncQueue()

    def submit(self, auth: AuthContext | None, candidate: Mapping[str, Any]) -> LeaveRequest:
        """
        File a new leave request for the caller.

        Raises:
            Unauthorized: Nobody is signed in, or the candidate claims another requester.
            InvalidTransition: The candidate already carries a status.
            ValidationError: The candidate failed a structural check.
            StorageError: The store rejected or failed the insert.
        """
        if auth is None:
            raise Unauthorized("Sign in to request leave")

        claimed = candidate.get("requester_id") or candidate.get("requesterId")
        if claimed and claimed != auth.user_id:
            logger.warning("Submission by %s claimed requester %s", auth.user_id, claimed)
            raise Unauthorized("Requests can only be filed by their requester")

        if candidate.get("status") not in (None, ""):
            raise InvalidTransition("New requests cannot carry a status")

        now = self.clock()
        submission = validate_leave_request(
            candidate,
            reject_past_start_dates=self.reject_past_start_dates,
            today=now.date(),
        )

        request = LeaveRequest(
            id=str(uuid.uuid4()),
            requester_id=auth.user_id,
            leave_type=submission.leave_type,
            start_date=submission.start_date,
            end_date=submission.end_date,
            reason=submission.reason,
            status=LeaveStatus.PENDING,
            created_at=now,
        )

        with trace_span("submit_leave_request", requester=auth.user_id, days=request.days):
            self.store.session(auth).insert(LEAVE_REQUESTS_TABLE, request.to_record())

        logger.info(
            "Leave request %s submitted by %s: %s %s..%s",
            request.id,
            auth.user_id,
            request.leave_type.value,
            request.start_date,
            request.end_date,
        )
        return request

    def transition(
        self, auth: AuthContext | None, request_id: str, new_status: LeaveStatus | str
    ) -> LeaveRequest:
        """
        Resolve a pending request as approved or rejected.

        The status change is committed by a single compare-and-set on
        ``status = 'pending'``; losing that race, or calling this on a
        resolved request, raises ``InvalidTransition`` and changes nothing.

        Raises:
            InvalidTransition: Target is not approved/rejected, or the request is not pending.
            NotFoundError: No such request is visible to the caller.
            Unauthorized: The store's policy refused the update (caller is not a reviewer).
            StorageError: The status update itself failed.
        """
        try:
            target = LeaveStatus(new_status)
        except ValueError:
            raise InvalidTransition(f"Unknown status: {new_status}") from None
        if not target.is_terminal:
            raise InvalidTransition("Requests can only be approved or rejected")
        if auth is None:
            raise Unauthorized("Sign in to review leave requests")

        session = self.store.session(auth)
        reviewed_at = self.clock()
        patch = {
            "status": target.value,
            "reviewed_by": auth.user_id,
            "reviewed_at": reviewed_at,
        }

        with trace_span("transition_leave_request", request=request_id, status=target.value):
            try:
                record = session.update_where(
                    LEAVE_REQUESTS_TABLE,
                    {"id": request_id, "status": LeaveStatus.PENDING.value},
                    patch,
                )
            except NotFoundError:
                self._raise_for_missed_transition(session, request_id)
                raise
            except StorageError as e:
                record = self._find_committed_transition(session, request_id, patch)
                if record is None:
                    raise
                logger.warning(
                    "Status update for %s reported %s but had committed; continuing", request_id, e
                )

        request = LeaveRequest.from_record(record)
        logger.info("Leave request %s %s by %s", request.id, target.value, auth.user_id)

        if target is LeaveStatus.APPROVED:
            self._apply_balance(session, request, reviewed_at)

        return request

    def balance_year(self, request: LeaveRequest, approved_at: datetime) -> int:
        """Year of the balance row an approval is charged against."""
        if self.balance_year_policy == "approval":
            return approved_at.year
        return request.start_date.year

    def pending_balance_updates(self) -> list[PendingBalanceUpdate]:
        return self.sync_queue.snapshot()

    def retry_balance_updates(self, auth: AuthContext | None) -> dict[str, list[str]]:
        """
        Re-attempt every queued increment once.

        Entries that apply leave the queue; entries that fail again go back
        with their attempt count bumped.
        """
        if auth is None or not auth.is_reviewer:
            raise Unauthorized("Only reviewers can retry balance updates")

        session = self.store.session(auth)
        applied: list[str] = []
        failed: list[str] = []

        entries = self.sync_queue.claim_all()
        for index, entry in enumerate(entries):
            try:
                with trace_span("retry_balance_update", request=entry.request_id, days=entry.days):
                    session.atomic_increment(
                        LEAVE_BALANCES_TABLE, entry.key, "used_days", entry.days
                    )
            except StorageError as e:
                entry.attempts += 1
                entry.last_error = str(e)
                self.sync_queue.add(entry)
                failed.append(entry.request_id)
                logger.warning(
                    "Balance update for %s failed again (attempt %d): %s",
                    entry.request_id,
                    entry.attempts,
                    e,
                )
            except Exception:
                # Put back everything not yet attempted, then propagate.
                for remaining in entries[index:]:
                    self.sync_queue.add(remaining)
                raise
            else:
                applied.append(entry.request_id)
                logger.info("Balance update for %s applied on retry", entry.request_id)

        return {"applied": applied, "failed": failed}

    def _apply_balance(
        self, session: StoreSession, request: LeaveRequest, approved_at: datetime
    ) -> None:
        year = self.balance_year(request, approved_at)
        if request.start_date.year != request.end_date.year:
            logger.info(
                "Leave request %s spans %d-%d; charging all %d days to %d",
                request.id,
                request.start_date.year,
                request.end_date.year,
                request.days,
                year,
            )

        entry = PendingBalanceUpdate(
            request_id=request.id,
            requester_id=request.requester_id,
            leave_type=request.leave_type,
            year=year,
            days=request.days,
            last_error="",
        )
        try:
            with trace_span("apply_balance_update", request=request.id, days=request.days, year=year):
                session.atomic_increment(LEAVE_BALANCES_TABLE, entry.key, "used_days", entry.days)
        except StorageError as e:
            entry.last_error = str(e)
            self.sync_queue.add(entry)
            logger.error(
                "Approved leave request %s but balance update failed; queued for retry: %s",
                request.id,
                e,
            )

    def _find_committed_transition(
        self, session: StoreSession, request_id: str, patch: dict[str, Any]
    ) -> dict[str, Any] | None:
        """
        After a failed status update, return the row if this very update landed anyway.

        ``reviewed_at`` is unique to the call, so a match cannot be another
        reviewer's transition, nor an earlier one by the same reviewer.
        """
        try:
            rows = session.select_where(LEAVE_REQUESTS_TABLE, {"id": request_id})
        except StorageError as e:
            logger.error("Could not check outcome of status update for %s: %s", request_id, e)
            return None
        if rows and all(rows[0].get(column) == value for column, value in patch.items()):
            return rows[0]
        return None

    def _raise_for_missed_transition(self, session: StoreSession, request_id: str) -> None:
        """Explain a lost compare-and-set. Returns only when the request does not exist."""
        rows = session.select_where(LEAVE_REQUESTS_TABLE, {"id": request_id})
        if rows:
            current = rows[0]["status"]
            logger.info("Transition refused for %s: already %s", request_id, current)
            raise InvalidTransition("Leave request already resolved", current_status=current)
