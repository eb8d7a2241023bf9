import os
import sys
import logging
import pathlib
import contextvars
from logging.handlers import RotatingFileHandler
from pythonjsonlogger.json import JsonFormatter

_request_ctx_var = contextvars.ContextVar('request_ctx', default={})


def set_request_context(request_id: str, user_id: str = None):
    _request_ctx_var.set({'request_id': request_id, 'user_id': user_id})


def get_request_context():
    return _request_ctx_var.get()


def _inject_request_context(record):
    ctx = get_request_context()
    if not hasattr(record, 'request_id'):
        record.request_id = ctx.get('request_id')
    if not hasattr(record, 'user_id'):
        record.user_id = ctx.get('user_id')
    return True


def get_logger(name: str = 'studybuddy'):
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')
    # empty path disables the rotating file handlers
    LOG_FILE_PATH = os.getenv('LOG_FILE_PATH', 'logs')
    LOG_MAX_SIZE = int(os.getenv('LOG_MAX_SIZE', str(10 * 1024 * 1024)))
    LOG_MAX_FILES = int(os.getenv('LOG_MAX_FILES', '7'))

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL.upper())

    ch = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT == 'json':
        fmt = JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s')
    else:
        fmt = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    if LOG_FILE_PATH:
        log_path = pathlib.Path(LOG_FILE_PATH)
        if not log_path.is_absolute():
            log_path = pathlib.Path(os.getcwd()) / log_path
        log_path.mkdir(parents=True, exist_ok=True)

        combined = RotatingFileHandler(log_path / 'combined.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
        combined.setFormatter(fmt)
        logger.addHandler(combined)

        errors = RotatingFileHandler(log_path / 'error.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
        errors.setLevel(logging.ERROR)
        errors.setFormatter(fmt)
        logger.addHandler(errors)

    f = logging.Filter()
    f.filter = _inject_request_context
    logger.addFilter(f)
    logger.propagate = False

    return logger


def log_request(request_id: str, method: str, path: str, status_code: int, duration_ms: float, ip: str = None):
    logger = get_logger()
    logger.info('http_request', extra={'request_id': request_id, 'method': method, 'path': path, 'status_code': status_code, 'duration_ms': duration_ms, 'ip': ip})


def log_error(error: Exception, context: dict = None):
    logger = get_logger()
    logger.exception('error', exc_info=error, extra=context or {})


def log_llm_call(model: str, prompt_tokens: int, completion_tokens: int, duration_ms: float, attempt: int = 1):
    logger = get_logger()
    logger.info('llm_call', extra={'model': model, 'prompt_tokens': prompt_tokens, 'completion_tokens': completion_tokens, 'duration_ms': duration_ms, 'attempt': attempt})


def log_embedding_call(model: str, input_count: int, duration_ms: float):
    logger = get_logger()
    logger.info('embedding_call', extra={'model': model, 'input_count': input_count, 'duration_ms': duration_ms})


def log_ingestion_stage(document_id: str, stage: str, duration_ms: float, **details):
    logger = get_logger()
    logger.info('ingestion_stage', extra={'document_id': document_id, 'stage': stage, 'duration_ms': duration_ms, **details})


def log_generation_result(kind: str, allowed_count: int, returned_count: int, kept_count: int, dropped_ungrounded: int, dropped_duplicates: int, foreign_citations: int):
    logger = get_logger()
    logger.info('generation_result', extra={
        'kind': kind,
        'allowed_count': allowed_count,
        'returned_count': returned_count,
        'kept_count': kept_count,
        'dropped_ungrounded': dropped_ungrounded,
        'dropped_duplicates': dropped_duplicates,
        'foreign_citations': foreign_citations,
    })


def log_review(user_id: str, item_id: str, rating: str, interval_days: int, ease_factor: int):
    logger = get_logger()
    logger.info('review_recorded', extra={
        'user_id': user_id,
        'item_id': item_id,
        'rating': rating,
        'interval_days': interval_days,
        'ease_factor': ease_factor,
    })
