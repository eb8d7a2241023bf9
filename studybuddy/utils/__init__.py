"""Utility subpackage: structured logging and retry policy"""

from .logger import (
    get_logger,
    log_request,
    log_error,
    log_llm_call,
    log_embedding_call,
    log_ingestion_stage,
    log_generation_result,
    log_review,
    set_request_context,
    get_request_context,
)
from .retry import RetryPolicy, with_retry

__all__ = [
    'get_logger',
    'log_request',
    'log_error',
    'log_llm_call',
    'log_embedding_call',
    'log_ingestion_stage',
    'log_generation_result',
    'log_review',
    'set_request_context',
    'get_request_context',
    'RetryPolicy',
    'with_retry',
]
