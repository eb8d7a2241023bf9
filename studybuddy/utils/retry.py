"""Generic retry helper for calls to the external model service.

`with_retry` wraps any zero-argument callable. Only the exception classes named by
the policy are retried; any other error escapes on the first attempt. When the
attempt budget is exhausted the last transient error is re-raised unchanged so
the caller can surface it.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Type, TypeVar

import tenacity
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from studybuddy.errors import InvalidConfiguration, TransientServiceError
from studybuddy.utils.logger import get_logger

LOG = get_logger()

T = TypeVar('T')


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 10.0
    retry_on: Tuple[Type[BaseException], ...] = (TransientServiceError,)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise InvalidConfiguration(f'max_attempts must be >= 1, got {self.max_attempts}')
        if self.base_delay < 0 or self.max_delay < 0:
            raise InvalidConfiguration('retry delays must be non-negative')

    @classmethod
    def from_settings(cls, settings) -> 'RetryPolicy':
        return cls(
            max_attempts=settings.OPENAI_RETRY_ATTEMPTS,
            base_delay=settings.OPENAI_RETRY_BASE_DELAY,
            max_delay=settings.OPENAI_RETRY_MAX_WAIT,
        )


def _log_retry(retry_state: tenacity.RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    LOG.warning('retrying_transient_error', extra={
        'attempt': retry_state.attempt_number,
        'error': str(exc),
        'error_type': type(exc).__name__ if exc else None,
        'next_wait_s': retry_state.next_action.sleep if retry_state.next_action else None,
    })


def with_retry(operation: Callable[[], T], policy: Optional[RetryPolicy] = None, sleep: Optional[Callable[[float], None]] = None) -> T:
    policy = policy or RetryPolicy()
    # base, 2*base, 4*base ... capped at max_delay
    kwargs = dict(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait_exponential(multiplier=policy.base_delay, exp_base=2, min=policy.base_delay, max=policy.max_delay),
        retry=retry_if_exception_type(policy.retry_on),
        before_sleep=_log_retry,
        reraise=True,
    )
    if sleep is not None:
        kwargs['sleep'] = sleep
    retrying = Retrying(**kwargs)
    return retrying(operation)
