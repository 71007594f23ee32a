"""
Logging setup and lightweight execution tracing.

Every store call and every workflow operation runs inside ``trace_span`` so
that a slow or failing approval can be reconstructed from the logs alone:
which backend call it made, how long it took, and whether it raised.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager

logger = logging.getLogger("hr_portal.trace")

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once for the process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


@contextmanager
def trace_span(name: str, **metadata):
    """
    Measure and log one operation.

    Example log:
    [TRACE] transition_leave_request duration_ms=4.12 outcome=ok request=7f3c status=approved

    Always logs completion, records the exception class as the outcome when
    one escapes, and never suppresses it.
    """
    start = time.perf_counter()
    outcome = "ok"
    try:
        yield
    except Exception as e:
        outcome = type(e).__name__
        raise
    finally:
        duration_ms = (time.perf_counter() - start) * 1000

        meta = " ".join(f"{k}={v}" for k, v in metadata.items())
        logger.info("[TRACE] %s duration_ms=%.2f outcome=%s %s", name, duration_ms, outcome, meta)
