import os
from typing import List

import fitz  # PyMuPDF

from studybuddy.models import PageText
from studybuddy.utils.logger import get_logger

LOG = get_logger()


class PDFReadError(Exception):
    pass


def normalize_page_text(text: str) -> str:
    return ' '.join((text or '').split())


def read_pdf_pages(path: str) -> List[PageText]:
    """Extract whitespace-normalised text for every page (1-based page numbers).

    Pages without extractable text (scanned images) are returned with empty text;
    the chunker skips them.
    """
    if not os.path.isfile(path):
        raise PDFReadError(f'PDF not found: {path}')
    try:
        with fitz.open(path) as doc:
            if doc.needs_pass:
                raise PDFReadError(f'PDF is encrypted: {path}')
            pages = [PageText(page_number=index + 1, text=normalize_page_text(page.get_text('text'))) for index, page in enumerate(doc)]
    except PDFReadError:
        raise
    except Exception as e:
        raise PDFReadError(f'Could not read PDF {path}: {e}') from e
    LOG.info('pdf_read', extra={'path': path, 'page_count': len(pages), 'empty_pages': sum(1 for p in pages if not p.text)})
    return pages
