"""Page-attributed passage chunking.

Each page is chunked on its own so that every passage carries exactly one page
number and overlap never spans a page boundary. Tokens are whitespace-delimited
words; a window of `target_size` tokens slides across the page with a step of
`max(target_size - overlap, 1)`.

Usage:
    drafts = chunk_pages([PageText(1, 'one two three four five')], target_size=4, overlap=1)
"""
import math
from numbers import Real
from typing import Any, Iterable, List, Sequence, Union

from studybuddy.errors import InvalidConfiguration
from studybuddy.models import PageText, PassageDraft
from studybuddy.utils.logger import get_logger

LOG = get_logger()

DEFAULT_CHUNK_SIZE = 520
DEFAULT_OVERLAP = 80

PageLike = Union[PageText, dict, Sequence[Any]]


def _as_count(name: str, value: Any, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, Real):
        raise InvalidConfiguration(f'{name} must be a number, got {value!r}')
    if not math.isfinite(value) or int(value) != value:
        raise InvalidConfiguration(f'{name} must be a finite whole number, got {value!r}')
    if value < minimum:
        raise InvalidConfiguration(f'{name} must be >= {minimum}, got {value!r}')
    return int(value)


def _as_page(page: PageLike) -> PageText:
    if isinstance(page, PageText):
        return page
    if isinstance(page, dict):
        return PageText(page_number=int(page['page_number']), text=page.get('text') or '')
    page_number, text = page
    return PageText(page_number=int(page_number), text=text or '')


def tokenize(text: str) -> List[str]:
    return text.split()


def chunk_page(tokens: List[str], target_size: int, overlap: int) -> List[List[str]]:
    step = max(target_size - overlap, 1)
    windows = []
    for start in range(0, len(tokens), step):
        window = tokens[start:start + target_size]
        if not window:
            continue
        windows.append(window)
    return windows


def chunk_pages(pages: Iterable[PageLike], target_size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP) -> List[PassageDraft]:
    """Split ordered page texts into overlapping, size-bounded passage drafts.

    Args:
        pages: ordered pages as `PageText`, `{'page_number', 'text'}` dicts or `(page_number, text)` pairs.
        target_size: whitespace tokens per passage.
        overlap: tokens shared by consecutive passages of the same page.

    Returns:
        Drafts in page order with a document-wide `sequence_index`.

    Raises:
        InvalidConfiguration: when `target_size` or `overlap` is not a usable count.
    """
    target_size = _as_count('target_size', target_size, 1)
    overlap = _as_count('overlap', overlap, 0)

    drafts: List[PassageDraft] = []
    skipped_pages = 0
    for raw in pages:
        page = _as_page(raw)
        tokens = tokenize(page.text)
        if not tokens:
            skipped_pages += 1
            continue
        for window in chunk_page(tokens, target_size, overlap):
            drafts.append(PassageDraft(
                sequence_index=len(drafts),
                page_number=page.page_number,
                text=' '.join(window),
                token_count=len(window),
            ))

    LOG.debug('pages_chunked', extra={'passage_count': len(drafts), 'skipped_pages': skipped_pages, 'target_size': target_size, 'overlap': overlap})
    return drafts
