"""
Builds the object graph the API runs on.
"""

import logging
from dataclasses import dataclass

from data.hr_directory import MOCK_PROFILES, build_balance_rows
from hr_portal.auth import IdentityProvider
from hr_portal.config import Settings, settings
from hr_portal.memory_store import MemoryLeaveStore
from hr_portal.queries import LeaveQueries
from hr_portal.reconciler import LeaveReconciler
from hr_portal.store import LeaveStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: LeaveStore
    identity: IdentityProvider
    reconciler: LeaveReconciler
    queries: LeaveQueries

    def close(self) -> None:
        self.store.close()


def create_store(config: Settings) -> LeaveStore:
    """Snowflake when an account is configured, otherwise the seeded in-memory store."""
    breaker = {
        "failure_threshold": config.circuit_breaker_failure_threshold,
        "timeout": config.circuit_breaker_timeout,
    }
    if config.snowflake_account:
        from hr_portal.snowflake_store import SnowflakeLeaveStore

        logger.info("Using Snowflake leave store (account=%s)", config.snowflake_account)
        return SnowflakeLeaveStore(config, **breaker)

    logger.info("No Snowflake account configured; using in-memory leave store")
    return MemoryLeaveStore(balances=build_balance_rows(), **breaker)


def build_services(config: Settings = settings) -> Services:
    store = create_store(config)
    identity = IdentityProvider(
        MOCK_PROFILES,
        secret_key=config.jwt_secret_key,
        algorithm=config.jwt_algorithm,
        token_ttl_minutes=config.access_token_expire_minutes,
        max_sessions=config.max_sessions,
        session_ttl_seconds=config.session_ttl_seconds,
        bcrypt_rounds=config.password_bcrypt_rounds,
    )
    reconciler = LeaveReconciler(
        store,
        balance_year_policy=config.balance_year_policy,
        reject_past_start_dates=config.reject_past_start_dates,
    )
    queries = LeaveQueries(store, MOCK_PROFILES)
    return Services(store=store, identity=identity, reconciler=reconciler, queries=queries)


# Global services instance
_services: Services | None = None


def get_services() -> Services:
    """Get or create the global services instance."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def reset_services() -> None:
    """Drop the global instance so the next call rebuilds it."""
    global _services
    if _services is not None:
        _services.close()
    _services = None
