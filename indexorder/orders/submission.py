"""
Signed order submission with a bounded retry budget.

Transient rejections (ALLOWANCE, RATE_LIMITED, UNKNOWN) are retried up to
``RetryPolicy.max_attempts``; REVERTED is surfaced on the first attempt.
Running out of attempts is not an error: the result reports the order as
created but not submitted and the caller keeps the signed artifact.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..constants import SUBMISSION_MAX_ATTEMPTS, SUBMISSION_RETRY_DELAY
from ..exceptions import RejectionReason, SubmissionRejected
from .order import Order

logger = logging.getLogger(__name__)

ApprovalHook = Callable[[Order], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = SUBMISSION_MAX_ATTEMPTS
    base_delay: float = SUBMISSION_RETRY_DELAY
    multiplier: float = 1.0
    max_delay: float = 30.0
    jitter: float = 0.0

    def delay(self, attempt: int) -> float:
        """Seconds to wait after failed *attempt* (1-based)."""
        delay = min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay

    @classmethod
    def from_config(cls, config) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay=config.base_delay,
            multiplier=config.multiplier,
            max_delay=config.max_delay,
            jitter=config.jitter,
        )


@dataclass
class SubmissionResult:
    submitted: bool
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    code: Optional[str] = None
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submitted": self.submitted,
            "result": self.result,
            "error": self.error,
            "code": self.code,
            "attempts": self.attempts,
        }


class SubmissionClient:
    """
    Submits signed orders to the order book.

    *approval_hook* is awaited before retrying an ALLOWANCE rejection so the
    maker's token approval can be refreshed; a failing hook ends the retries.
    """

    def __init__(
        self,
        orderbook,
        policy: Optional[RetryPolicy] = None,
        approval_hook: Optional[ApprovalHook] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.orderbook = orderbook
        self.policy = policy or RetryPolicy()
        self.approval_hook = approval_hook
        self._sleep = sleep

    async def submit(self, order: Order, order_hash: str, signature: str) -> SubmissionResult:
        last_error: Optional[SubmissionRejected] = None

        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                result = await self.orderbook.submit_order(order, order_hash, signature)
            except SubmissionRejected as exc:
                last_error = exc
                logger.warning(
                    f"Submission of {order_hash} rejected (attempt {attempt}/{self.policy.max_attempts}): "
                    f"{exc.code} {exc.message}"
                )
                if not exc.reason.is_transient:
                    return SubmissionResult(False, error=exc.message, code=exc.code, attempts=attempt)
                if attempt == self.policy.max_attempts:
                    break
                if exc.reason is RejectionReason.ALLOWANCE and self.approval_hook is not None:
                    try:
                        await self.approval_hook(order)
                    except Exception as hook_exc:
                        logger.error(f"Approval step for {order_hash} failed: {hook_exc}")
                        return SubmissionResult(False, error=exc.message, code=exc.code, attempts=attempt)
                await self._sleep(self.policy.delay(attempt))
                continue

            logger.info(f"Order {order_hash} submitted (attempt {attempt})")
            return SubmissionResult(True, result=result, attempts=attempt)

        logger.error(
            f"Order {order_hash} created but not submitted after {self.policy.max_attempts} attempts"
        )
        return SubmissionResult(
            False,
            error=last_error.message if last_error else "Submission failed",
            code=last_error.code if last_error else None,
            attempts=self.policy.max_attempts,
        )
