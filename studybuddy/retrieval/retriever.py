"""Similarity retrieval over the passages of ready documents."""
from dataclasses import dataclass
from typing import List, Optional, Sequence

from studybuddy.errors import InvalidConfiguration
from studybuddy.models import Passage
from studybuddy.utils.logger import get_logger

LOG = get_logger()

SNIPPET_LENGTH = 240
DEFAULT_SEARCH_K = 12


@dataclass(frozen=True)
class RetrievalScope:
    course_id: Optional[str] = None
    document_id: Optional[str] = None


@dataclass(frozen=True)
class SearchHit:
    passage: Passage
    score: float
    snippet: str

    def to_dict(self) -> dict:
        return {
            'passage_id': self.passage.id,
            'document_id': self.passage.source_document_id,
            'page_number': self.passage.page_number,
            'score': self.score,
            'snippet': self.snippet,
        }


class Retriever:
    def __init__(self, embedder, passages):
        self.embedder = embedder
        self.passages = passages

    def _ranked(self, query_text: str, scope: RetrievalScope, k: int):
        if isinstance(k, bool) or not isinstance(k, int) or k <= 0:
            raise InvalidConfiguration(f'k must be a positive integer, got {k!r}')
        # EmbeddingUnavailable propagates; an empty result always means an empty scope
        vector = self.embedder.embed(query_text)
        ranked = self.passages.search(vector, course_id=scope.course_id, document_id=scope.document_id, k=k)
        LOG.debug('passages_retrieved', extra={'k': k, 'returned': len(ranked), 'course_id': scope.course_id, 'document_id': scope.document_id})
        return ranked

    def retrieve(self, query_text: str, scope: RetrievalScope, k: int) -> List[Passage]:
        """Top-k passages in scope, most similar first; ties by (document, sequence index)."""
        return [passage for passage, _ in self._ranked(query_text, scope, k)]

    def search(self, query_text: str, scope: RetrievalScope, k: int = DEFAULT_SEARCH_K) -> List[SearchHit]:
        return [
            SearchHit(passage=passage, score=score, snippet=passage.text[:SNIPPET_LENGTH])
            for passage, score in self._ranked(query_text, scope, k)
        ]

    def lookup(self, passage_ids: Sequence[str], ready_only: bool = True) -> List[Passage]:
        """Passages by id in the order given. Allow-lists only take passages of ready documents."""
        return self.passages.get_many(passage_ids, ready_only=ready_only)
