"""Chat-completion client returning the raw JSON text of one completion.

Usage:
    client = CompletionClient()
    raw = client.complete(system_instruction, user_prompt, schema_hint)
"""
import itertools
import json
import time
from typing import Any, Dict, Optional

from openai import OpenAI, OpenAIError

from studybuddy.config import get_settings
from studybuddy.errors import CompletionUnavailable, InvalidConfiguration
from studybuddy.utils.logger import get_logger, log_llm_call
from studybuddy.utils.retry import RetryPolicy, with_retry

LOG = get_logger()


class CompletionClient:
    def __init__(self, client=None, model: Optional[str] = None, temperature: Optional[float] = None,
                 max_tokens: Optional[int] = None, retry_policy: Optional[RetryPolicy] = None, sleep=None):
        settings = get_settings()
        self.model = model or settings.OPENAI_MODEL
        self.temperature = settings.OPENAI_TEMPERATURE if temperature is None else temperature
        self.max_tokens = max_tokens or settings.OPENAI_MAX_TOKENS
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._sleep = sleep
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise InvalidConfiguration('OPENAI_API_KEY not set')
            client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT, max_retries=0)
        self.client = client
        LOG.info('CompletionClient initialized', extra={'model': self.model})

    def _build_messages(self, system_instruction: str, user_prompt: str, schema_hint: Optional[Dict[str, Any]]):
        system = system_instruction
        if schema_hint:
            system += '\n\nRespond with a single JSON object matching this JSON schema:\n' + json.dumps(schema_hint)
        return [
            {'role': 'system', 'content': system},
            {'role': 'user', 'content': user_prompt},
        ]

    def _call(self, messages, attempt: int = 1) -> str:
        start = time.time()
        try:
            resp = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                response_format={'type': 'json_object'},
            )
        except OpenAIError as e:
            LOG.warning('completion_call_failed', extra={'model': self.model, 'attempt': attempt, 'error': str(e)})
            raise CompletionUnavailable(f'completion request failed: {e}') from e
        duration = int((time.time() - start) * 1000)
        usage = getattr(resp, 'usage', None)
        log_llm_call(
            self.model,
            getattr(usage, 'prompt_tokens', 0) or 0,
            getattr(usage, 'completion_tokens', 0) or 0,
            duration,
            attempt=attempt,
        )
        choices = getattr(resp, 'choices', None) or []
        content = choices[0].message.content if choices else None
        # an empty body is malformed output, not a transport failure; the validator rejects it
        return content or ''

    def complete(self, system_instruction: str, user_prompt: str, schema_hint: Optional[Dict[str, Any]] = None) -> str:
        messages = self._build_messages(system_instruction, user_prompt, schema_hint)
        attempts = itertools.count(1)
        return with_retry(lambda: self._call(messages, next(attempts)), self.retry_policy, sleep=self._sleep)
