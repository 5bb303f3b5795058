# Overview: Service-layer operations for concurrency; row locking and retry policy.

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from ..errors import ServiceError

logger = logging.getLogger(__name__)


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def _is_retryable_service_error(exc: BaseException) -> bool:
    return isinstance(exc, ServiceError) and exc.retryable


@dataclass(frozen=True)
class RetryPolicy:
    """
    One retry rule shared by every caller that talks to something flaky.

    - max_attempts: total tries, including the first
    - backoff_base: sleep before retry n is backoff_base * 2**n seconds
    - retryable: predicate deciding whether an exception earns another try
    - on_retry: optional hook (e.g. session rollback) run before sleeping
    """
    max_attempts: int = 3
    backoff_base: float = 0.1
    retryable: Callable[[BaseException], bool] = field(default=_is_retryable_service_error)
    on_retry: Callable[[BaseException], None] | None = None
    sleep: Callable[[float], None] = field(default=time.sleep, compare=False)

    def delay_for(self, attempt: int) -> float:
        return self.backoff_base * (2 ** attempt)

    def run(self, func: Callable[[], object], *, label: str = "operation"):
        for attempt in range(self.max_attempts):
            try:
                return func()
            except Exception as exc:
                if not self.retryable(exc):
                    raise
                if self.on_retry is not None:
                    self.on_retry(exc)
                if attempt >= self.max_attempts - 1:
                    logger.warning("%s failed after %d attempts: %s", label, self.max_attempts, exc)
                    raise
                delay = self.delay_for(attempt)
                logger.info("%s failed (attempt %d/%d), retrying in %.2fs", label, attempt + 1, self.max_attempts, delay)
                self.sleep(delay)
        raise RuntimeError("RetryPolicy.max_attempts must be >= 1")
