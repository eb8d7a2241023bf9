"""OpenAI embedding client.

Every transport failure is mapped to `EmbeddingUnavailable` and retried by the
shared retry policy; a response whose vector count does not match the input
count is treated the same way, so callers never see a partial batch.
"""
import time
from typing import List, Optional, Sequence

from openai import OpenAI, OpenAIError

from studybuddy.config import get_settings
from studybuddy.errors import EmbeddingUnavailable, InvalidConfiguration
from studybuddy.utils.logger import get_logger, log_embedding_call
from studybuddy.utils.retry import RetryPolicy, with_retry

LOG = get_logger()


class EmbeddingClient:
    def __init__(self, client=None, model: Optional[str] = None, retry_policy: Optional[RetryPolicy] = None, sleep=None):
        settings = get_settings()
        self.model = model or settings.OPENAI_EMBED_MODEL
        self.retry_policy = retry_policy or RetryPolicy.from_settings(settings)
        self._sleep = sleep
        if client is None:
            if not settings.OPENAI_API_KEY:
                raise InvalidConfiguration('OPENAI_API_KEY not set')
            # tenacity owns retries; the SDK's own retry loop is disabled
            client = OpenAI(api_key=settings.OPENAI_API_KEY, timeout=settings.OPENAI_TIMEOUT, max_retries=0)
        self.client = client
        LOG.info('EmbeddingClient initialized', extra={'model': self.model})

    def _call(self, texts: List[str]) -> List[List[float]]:
        start = time.time()
        try:
            resp = self.client.embeddings.create(model=self.model, input=texts)
        except OpenAIError as e:
            raise EmbeddingUnavailable(f'embedding request failed: {e}') from e
        data = sorted(resp.data, key=lambda d: d.index)
        if len(data) != len(texts):
            raise EmbeddingUnavailable(f'embedding service returned {len(data)} vectors for {len(texts)} inputs')
        duration = int((time.time() - start) * 1000)
        log_embedding_call(self.model, len(texts), duration)
        return [list(d.embedding) for d in data]

    def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        texts = list(texts)
        if not texts:
            return []
        return with_retry(lambda: self._call(texts), self.retry_policy, sleep=self._sleep)

    def embed(self, text: str) -> List[float]:
        return self.embed_batch([text])[0]
