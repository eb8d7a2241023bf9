"""Document ingestion: read -> chunk -> persist -> embed -> finalize.

The orchestrator is the only writer of a document's lifecycle row. A failure in
any stage marks the document failed with "<stage>: <message>" and raises
`IngestionFailed` chained to the cause; passages written by a failed attempt
stay invisible to retrieval (the document is not ready) and are replaced by the
next attempt.
"""
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from studybuddy.config import get_settings
from studybuddy.errors import DocumentNotFound, IngestionFailed, InvalidConfiguration
from studybuddy.models import DocumentStatus, PageText, Passage
from studybuddy.utils.logger import get_logger, log_ingestion_stage

from .chunker import chunk_pages
from .pdf_reader import read_pdf_pages

LOG = get_logger()


@dataclass(frozen=True)
class IngestionResult:
    document_id: str
    page_count: int
    passage_count: int
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            'document_id': self.document_id,
            'page_count': self.page_count,
            'passage_count': self.passage_count,
            'skipped': self.skipped,
        }


class IngestionOrchestrator:
    def __init__(self, documents, passages, embedder, page_reader: Callable[[str], List[PageText]] = read_pdf_pages,
                 chunk_size: Optional[int] = None, overlap: Optional[int] = None, batch_size: Optional[int] = None):
        settings = get_settings()
        self.documents = documents
        self.passages = passages
        self.embedder = embedder
        self.page_reader = page_reader
        self.chunk_size = chunk_size if chunk_size is not None else settings.CHUNK_SIZE
        self.overlap = overlap if overlap is not None else settings.CHUNK_OVERLAP
        self.batch_size = batch_size if batch_size is not None else settings.EMBED_BATCH_SIZE
        if self.batch_size < 1:
            raise InvalidConfiguration(f'batch_size must be >= 1, got {self.batch_size}')

    def process_document(self, document_id: str, path: Optional[str] = None, force: bool = False) -> IngestionResult:
        document = self.documents.get(document_id)
        if document is None:
            raise DocumentNotFound(f'document {document_id} not found')

        if document.status == DocumentStatus.READY and not force:
            LOG.info('ingestion_skipped', extra={'document_id': document_id, 'reason': 'already_ready'})
            return IngestionResult(document_id, document.page_count or 0, document.passage_count or 0, skipped=True)

        source = path or document.storage_path
        self.documents.update_status(document_id, DocumentStatus.PROCESSING)
        stage = 'read'
        started = time.time()
        try:
            t0 = time.time()
            pages = self.page_reader(source)
            log_ingestion_stage(document_id, stage, int((time.time() - t0) * 1000), page_count=len(pages))

            stage = 'chunk'
            t0 = time.time()
            drafts = chunk_pages(pages, target_size=self.chunk_size, overlap=self.overlap)
            log_ingestion_stage(document_id, stage, int((time.time() - t0) * 1000), passage_count=len(drafts))

            stage = 'persist'
            t0 = time.time()
            passages = [Passage.from_draft(document_id, d) for d in drafts]
            self.passages.replace_for_document(document_id, passages)
            log_ingestion_stage(document_id, stage, int((time.time() - t0) * 1000))

            stage = 'embed'
            t0 = time.time()
            batches = 0
            # batches are sent one after another, never concurrently
            for start in range(0, len(passages), self.batch_size):
                batch = passages[start:start + self.batch_size]
                vectors = self.embedder.embed_batch([p.text for p in batch])
                self.passages.set_embeddings([(p.id, vec) for p, vec in zip(batch, vectors)])
                batches += 1
            log_ingestion_stage(document_id, stage, int((time.time() - t0) * 1000), batches=batches)

            stage = 'finalize'
            self.documents.update_status(document_id, DocumentStatus.READY, page_count=len(pages), passage_count=len(passages))
        except Exception as e:
            message = getattr(e, 'message', None) or str(e) or type(e).__name__
            self.documents.update_status(document_id, DocumentStatus.FAILED, error_message=f'{stage}: {message}')
            LOG.error('ingestion_failed', extra={'document_id': document_id, 'stage': stage, 'error': message})
            raise IngestionFailed(message, stage, document_id) from e

        LOG.info('ingestion_complete', extra={
            'document_id': document_id,
            'page_count': len(pages),
            'passage_count': len(passages),
            'duration_ms': int((time.time() - started) * 1000),
        })
        return IngestionResult(document_id, len(pages), len(passages))
