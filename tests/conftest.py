import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest
from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# load test env first
env_path = ROOT / '.env.test'
if env_path.exists():
    load_dotenv(env_path)

os.environ.setdefault('TESTING', '1')
os.environ['LOG_FILE_PATH'] = ''
os.environ.setdefault('OPENAI_API_KEY', 'test-key')
os.environ.setdefault('LOG_LEVEL', 'WARNING')

from studybuddy.models import DocumentStatus, PageText, Passage  # noqa: E402
from studybuddy.storage import ArtifactStore, Database, DocumentStore, PassageStore, ReviewStateStore  # noqa: E402
from tests.fixtures.fake_services import HashEmbedder, ScriptedCompletion  # noqa: E402

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

SAMPLE_PAGES = [
    PageText(1, 'Photosynthesis converts light energy into chemical energy stored in glucose inside chloroplasts.'),
    PageText(2, 'Chlorophyll absorbs red and blue light and reflects green light which gives leaves their color.'),
    PageText(3, 'Cellular respiration releases energy from glucose and produces carbon dioxide and water as waste.'),
]


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db():
    database = Database(':memory:')
    yield database
    database.close()


@pytest.fixture
def documents(db):
    return DocumentStore(db)


@pytest.fixture
def passages(db):
    return PassageStore(db)


@pytest.fixture
def review_states(db):
    return ReviewStateStore(db)


@pytest.fixture
def artifacts(db):
    return ArtifactStore(db)


@pytest.fixture
def embedder():
    return HashEmbedder()


@pytest.fixture
def completion():
    return ScriptedCompletion()


@pytest.fixture
def sample_pages():
    return list(SAMPLE_PAGES)


@pytest.fixture
def ready_document(documents, passages, embedder):
    """A ready document of course-1 with one embedded passage per sample page."""
    document = documents.create('Biology notes', '/tmp/biology.pdf', course_id='course-1')
    items = [
        Passage(
            id=Passage.make_id(document.id, i),
            source_document_id=document.id,
            sequence_index=i,
            page_number=page.page_number,
            text=page.text,
            embedding=tuple(embedder.embed(page.text)),
        )
        for i, page in enumerate(SAMPLE_PAGES)
    ]
    passages.replace_for_document(document.id, items)
    documents.update_status(document.id, DocumentStatus.READY, page_count=len(SAMPLE_PAGES), passage_count=len(items))
    return documents.get(document.id)
