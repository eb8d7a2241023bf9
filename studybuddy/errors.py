"""Exception hierarchy shared by the ingestion, retrieval, generation and review layers.

Transient transport failures (`EmbeddingUnavailable`, `CompletionUnavailable`) are
the only errors the retry policy recovers from; everything else is surfaced to
the caller with the stage that produced it.
"""
from typing import Optional


class StudyBuddyError(Exception):
    stage: str = 'core'

    def __init__(self, message: str = '', stage: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if stage:
            self.stage = stage

    def to_dict(self) -> dict:
        return {'type': type(self).__name__, 'stage': self.stage, 'message': self.message}


class InvalidConfiguration(StudyBuddyError):
    stage = 'configuration'


class TransientServiceError(StudyBuddyError):
    pass


class EmbeddingUnavailable(TransientServiceError):
    stage = 'embedding'


class CompletionUnavailable(TransientServiceError):
    stage = 'completion'


class MalformedModelOutput(StudyBuddyError):
    stage = 'validation'

    def __init__(self, message: str = '', stage: Optional[str] = None, raw: Optional[str] = None):
        super().__init__(message, stage)
        self.raw = raw


class InvalidRating(StudyBuddyError):
    stage = 'review'


class DocumentNotFound(StudyBuddyError):
    stage = 'lookup'


class ConceptNotFound(StudyBuddyError):
    stage = 'lookup'


class CardNotFound(StudyBuddyError):
    stage = 'lookup'


class SourceNotReady(StudyBuddyError):
    """No ready document or no citable passages exist for the request."""
    stage = 'lookup'


class IngestionFailed(StudyBuddyError):
    def __init__(self, message: str, stage: str, document_id: str):
        super().__init__(message, stage)
        self.document_id = document_id

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['document_id'] = self.document_id
        return data
