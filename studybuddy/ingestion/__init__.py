"""Ingestion subpackage: PDF reading, chunking and the ingestion orchestrator"""

from .chunker import chunk_pages, DEFAULT_CHUNK_SIZE, DEFAULT_OVERLAP
from .orchestrator import IngestionOrchestrator, IngestionResult
from .pdf_reader import PDFReadError, read_pdf_pages

__all__ = [
    'chunk_pages',
    'DEFAULT_CHUNK_SIZE',
    'DEFAULT_OVERLAP',
    'IngestionOrchestrator',
    'IngestionResult',
    'PDFReadError',
    'read_pdf_pages',
]
