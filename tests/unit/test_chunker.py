import math

import pytest

from studybuddy.errors import InvalidConfiguration
from studybuddy.ingestion.chunker import chunk_pages
from studybuddy.models import PageText


@pytest.mark.unit
def test_overlapping_windows_on_single_page():
    drafts = chunk_pages([PageText(1, 'one two three four five six seven eight nine')], target_size=4, overlap=1)
    assert [d.text for d in drafts] == ['one two three four', 'four five six seven', 'seven eight nine']
    assert all(d.page_number == 1 for d in drafts)
    assert [d.sequence_index for d in drafts] == [0, 1, 2]
    assert [d.token_count for d in drafts] == [4, 4, 3]


@pytest.mark.unit
def test_overlap_never_crosses_pages():
    pages = [PageText(1, 'a b c'), PageText(2, 'd e f')]
    drafts = chunk_pages(pages, target_size=2, overlap=1)
    assert [(d.page_number, d.text) for d in drafts] == [
        (1, 'a b'), (1, 'b c'), (1, 'c'),
        (2, 'd e'), (2, 'e f'), (2, 'f'),
    ]
    assert [d.sequence_index for d in drafts] == list(range(6))


@pytest.mark.unit
def test_empty_pages_contribute_nothing():
    pages = [PageText(1, '   '), PageText(2, ''), PageText(3, 'only words here')]
    drafts = chunk_pages(pages, target_size=10, overlap=0)
    assert len(drafts) == 1
    assert drafts[0].page_number == 3
    assert drafts[0].sequence_index == 0


@pytest.mark.unit
def test_no_pages_gives_no_passages():
    assert chunk_pages([], target_size=5, overlap=1) == []


@pytest.mark.unit
def test_chunking_is_deterministic():
    pages = [PageText(i, ' '.join(f'w{i}_{j}' for j in range(37))) for i in range(1, 4)]
    assert chunk_pages(pages, 8, 3) == chunk_pages(pages, 8, 3)


@pytest.mark.unit
def test_overlap_at_least_size_still_advances():
    drafts = chunk_pages([PageText(1, 'a b c')], target_size=2, overlap=5)
    assert [d.text for d in drafts] == ['a b', 'b c', 'c']


@pytest.mark.unit
def test_accepts_dicts_and_pairs():
    drafts = chunk_pages([{'page_number': 4, 'text': 'x y'}, (5, 'z')], target_size=5, overlap=0)
    assert [(d.page_number, d.text) for d in drafts] == [(4, 'x y'), (5, 'z')]


@pytest.mark.unit
def test_default_sizes_split_long_page():
    words = ' '.join(f'w{i}' for i in range(1000))
    drafts = chunk_pages([PageText(1, words)])
    # step 440: windows start at 0, 440, 880
    assert [d.token_count for d in drafts] == [520, 520, 120]


@pytest.mark.unit
@pytest.mark.parametrize('target_size, overlap', [
    (0, 0),
    (-3, 0),
    (2.5, 0),
    (math.inf, 0),
    (math.nan, 0),
    ('10', 0),
    (True, 0),
    (10, -1),
    (10, 1.5),
    (10, None),
])
def test_invalid_sizes_raise(target_size, overlap):
    with pytest.raises(InvalidConfiguration):
        chunk_pages([PageText(1, 'a b c')], target_size=target_size, overlap=overlap)
