"""Domain records shared by the ingestion, retrieval and review layers."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

# stable ids: the same (document, sequence index) always maps to the same passage id
PASSAGE_NAMESPACE = uuid.UUID('6f1c2a8e-3b7d-4f0e-9a51-2d8c7e4b9f13')


def as_utc(value: Optional[datetime]) -> datetime:
    """Current time when None; naive values are taken to be UTC like the store does."""
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DocumentStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    READY = 'ready'
    FAILED = 'failed'


@dataclass(frozen=True)
class PageText:
    page_number: int
    text: str


@dataclass(frozen=True)
class PassageDraft:
    sequence_index: int
    page_number: int
    text: str
    token_count: int


@dataclass(frozen=True)
class Passage:
    id: str
    source_document_id: str
    sequence_index: int
    page_number: int
    text: str
    embedding: Optional[Tuple[float, ...]] = None

    @staticmethod
    def make_id(document_id: str, sequence_index: int) -> str:
        return str(uuid.uuid5(PASSAGE_NAMESPACE, f'{document_id}:{sequence_index}'))

    @classmethod
    def from_draft(cls, document_id: str, draft: PassageDraft) -> 'Passage':
        return cls(
            id=cls.make_id(document_id, draft.sequence_index),
            source_document_id=document_id,
            sequence_index=draft.sequence_index,
            page_number=draft.page_number,
            text=draft.text,
        )


class AllowedPassageSet:
    """Request-scoped allow-list of passage ids, with their true page numbers."""

    def __init__(self, passages: Iterable[Passage]):
        self._pages: Dict[str, int] = {}
        self._passages: List[Passage] = []
        for p in passages:
            if p.id in self._pages:
                continue
            self._pages[p.id] = p.page_number
            self._passages.append(p)

    def __contains__(self, passage_id: object) -> bool:
        return passage_id in self._pages

    def __len__(self) -> int:
        return len(self._pages)

    def __iter__(self):
        return iter(self._passages)

    @property
    def ids(self) -> List[str]:
        return list(self._pages)

    def page_of(self, passage_id: str) -> int:
        return self._pages[passage_id]


@dataclass
class Document:
    id: str
    course_id: Optional[str]
    title: str
    storage_path: str
    status: DocumentStatus = DocumentStatus.PENDING
    error_message: Optional[str] = None
    page_count: Optional[int] = None
    passage_count: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class ReviewState:
    """SM-2 state for one (user, item) pair. Ease factor is fixed-point x1000."""
    ease_factor: int
    interval_days: int
    repetitions: int
    due_at: datetime
    last_reviewed_at: Optional[datetime] = None

    DEFAULT_EASE = 2500

    @classmethod
    def initial(cls, now: datetime) -> 'ReviewState':
        return cls(ease_factor=cls.DEFAULT_EASE, interval_days=0, repetitions=0, due_at=now, last_reviewed_at=None)

    def is_due(self, now: datetime) -> bool:
        return now >= self.due_at


@dataclass(frozen=True)
class ReviewEvent:
    user_id: str
    item_id: str
    rating: str
    scheduled_interval_days: int
    actual_interval_days: Optional[int]
    occurred_at: datetime


@dataclass
class Concept:
    id: str
    course_id: str
    document_id: Optional[str]
    module_title: str
    lesson_title: str
    title: str
    summary: str
    citations: List[dict] = field(default_factory=list)
    page_range: str = ''

    @property
    def citation_ids(self) -> List[str]:
        return [c['passage_id'] for c in self.citations]


@dataclass
class Card:
    id: str
    concept_id: str
    prompt: str
    answer: str
    citations: List[dict] = field(default_factory=list)
    is_scaffold: bool = False
    created_at: Optional[datetime] = None
