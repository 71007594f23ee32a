"""
Tests for settings, service wiring and trace logging.
"""

import logging

import pytest

from hr_portal.config import Settings
from hr_portal.memory_store import MemoryLeaveStore
from hr_portal.observability import trace_span
from hr_portal.services import build_services, create_store, get_services, reset_services
from hr_portal.snowflake_store import SnowflakeLeaveStore


class TestWiring:
    """Object graph construction."""

    def test_memory_store_without_account(self):
        store = create_store(Settings(SNOWFLAKE_ACCOUNT="", CIRCUIT_BREAKER_FAILURE_THRESHOLD=7))

        assert isinstance(store, MemoryLeaveStore)
        assert store.get_circuit_breaker_state()["failure_threshold"] == 7

    def test_snowflake_store_with_account(self):
        """The Snowflake session is opened lazily, so nothing connects here."""
        store = create_store(Settings(SNOWFLAKE_ACCOUNT="xy12345"))

        assert isinstance(store, SnowflakeLeaveStore)
        assert store._snowpark is None

    def test_build_services_applies_workflow_settings(self):
        services = build_services(
            Settings(
                SNOWFLAKE_ACCOUNT="",
                BALANCE_YEAR_POLICY="approval",
                REJECT_PAST_START_DATES=True,
                PASSWORD_BCRYPT_ROUNDS=4,
            )
        )

        assert services.reconciler.balance_year_policy == "approval"
        assert services.reconciler.reject_past_start_dates is True
        assert services.queries.store is services.store
        assert services.reconciler.store is services.store

    def test_unknown_balance_year_policy_rejected(self):
        with pytest.raises(ValueError):
            Settings(BALANCE_YEAR_POLICY="end_date")

    def test_get_services_is_cached_until_reset(self):
        reset_services()
        first = get_services()

        assert get_services() is first
        reset_services()
        assert get_services() is not first
        reset_services()


class TestTraceSpan:
    """Trace log lines."""

    def test_logs_success(self, caplog):
        with caplog.at_level(logging.INFO, logger="hr_portal.trace"):
            with trace_span("list_requests", user="EMP-001"):
                pass

        assert "[TRACE] list_requests" in caplog.text
        assert "outcome=ok" in caplog.text
        assert "user=EMP-001" in caplog.text

    def test_logs_and_reraises_failure(self, caplog):
        with caplog.at_level(logging.INFO, logger="hr_portal.trace"):
            with pytest.raises(KeyError):
                with trace_span("store.select"):
                    raise KeyError("boom")

        assert "outcome=KeyError" in caplog.text
