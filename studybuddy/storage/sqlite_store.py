"""SQLite-backed stores for passages, document lifecycle, review state and generated artifacts.

Vectors are stored as float32 blobs and ranked in-process with numpy cosine
similarity. All stores share one `Database` (one connection guarded by a lock).
"""
from __future__ import annotations

import json
import sqlite3
import threading
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np

from studybuddy.models import Card, Concept, Document, DocumentStatus, Passage, ReviewEvent, ReviewState
from studybuddy.utils.logger import get_logger

LOG = get_logger()

SCHEMA = """
CREATE TABLE IF NOT EXISTS documents (
    id TEXT PRIMARY KEY,
    course_id TEXT,
    title TEXT NOT NULL,
    storage_path TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    error_message TEXT,
    page_count INTEGER,
    passage_count INTEGER,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS passages (
    id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(id) ON DELETE CASCADE,
    sequence_index INTEGER NOT NULL,
    page_number INTEGER NOT NULL,
    text TEXT NOT NULL,
    token_count INTEGER,
    embedding BLOB,
    UNIQUE (document_id, sequence_index)
);
CREATE TABLE IF NOT EXISTS concepts (
    id TEXT PRIMARY KEY,
    course_id TEXT NOT NULL,
    document_id TEXT REFERENCES documents(id) ON DELETE SET NULL,
    module_title TEXT,
    lesson_title TEXT,
    title TEXT NOT NULL,
    summary TEXT,
    citations TEXT,
    page_range TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS cards (
    id TEXT PRIMARY KEY,
    concept_id TEXT NOT NULL REFERENCES concepts(id) ON DELETE CASCADE,
    prompt TEXT NOT NULL,
    answer TEXT NOT NULL,
    citations TEXT,
    is_scaffold INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS quizzes (
    id TEXT PRIMARY KEY,
    course_id TEXT NOT NULL,
    module_title TEXT,
    lesson_title TEXT NOT NULL,
    questions TEXT,
    created_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS concept_explanations (
    user_id TEXT NOT NULL,
    concept_id TEXT NOT NULL REFERENCES concepts(id) ON DELETE CASCADE,
    explanation TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    PRIMARY KEY (user_id, concept_id)
);
CREATE TABLE IF NOT EXISTS review_states (
    user_id TEXT NOT NULL,
    item_id TEXT NOT NULL,
    ease_factor INTEGER NOT NULL DEFAULT 2500,
    interval_days INTEGER NOT NULL DEFAULT 0,
    repetitions INTEGER NOT NULL DEFAULT 0,
    due_at TEXT NOT NULL,
    last_reviewed_at TEXT,
    PRIMARY KEY (user_id, item_id)
);
CREATE TABLE IF NOT EXISTS review_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    item_id TEXT NOT NULL,
    rating TEXT NOT NULL,
    scheduled_interval_days INTEGER,
    actual_interval_days INTEGER,
    occurred_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_passages_document ON passages(document_id, sequence_index);
CREATE INDEX IF NOT EXISTS idx_documents_course ON documents(course_id, status);
CREATE INDEX IF NOT EXISTS idx_concepts_lesson ON concepts(course_id, lesson_title);
CREATE INDEX IF NOT EXISTS idx_review_states_due ON review_states(user_id, due_at);
"""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_time(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # fixed-width UTC strings so lexical order matches time order
    return value.astimezone(timezone.utc).isoformat(timespec='microseconds')


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def vector_to_blob(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype=np.float32).tobytes()


def blob_to_vector(blob: Optional[bytes]) -> Optional[np.ndarray]:
    if blob is None:
        return None
    return np.frombuffer(blob, dtype=np.float32)


class Database:
    def __init__(self, path: str = ':memory:'):
        self.path = path
        self.lock = threading.RLock()
        self.conn = sqlite3.connect(path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.execute('PRAGMA foreign_keys = ON')
        self.conn.executescript(SCHEMA)
        LOG.info('database_initialized', extra={'path': path})

    @contextmanager
    def transaction(self):
        with self.lock:
            try:
                yield self.conn
                self.conn.commit()
            except Exception:
                self.conn.rollback()
                raise

    def query(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self.lock:
            return self.conn.execute(sql, tuple(params)).fetchall()

    def close(self) -> None:
        with self.lock:
            self.conn.close()


class DocumentStore:
    """Document rows plus the lifecycle sink written by the ingestion orchestrator."""

    def __init__(self, db: Database):
        self.db = db

    def _row_to_document(self, row: sqlite3.Row) -> Document:
        return Document(
            id=row['id'],
            course_id=row['course_id'],
            title=row['title'],
            storage_path=row['storage_path'],
            status=DocumentStatus(row['status']),
            error_message=row['error_message'],
            page_count=row['page_count'],
            passage_count=row['passage_count'],
            created_at=from_db_time(row['created_at']),
            updated_at=from_db_time(row['updated_at']),
        )

    def create(self, title: str, storage_path: str, course_id: Optional[str] = None, document_id: Optional[str] = None) -> Document:
        now = to_db_time(utcnow())
        document_id = document_id or str(uuid.uuid4())
        with self.db.transaction() as conn:
            conn.execute(
                'INSERT INTO documents (id, course_id, title, storage_path, status, created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?, ?)',
                (document_id, course_id, title, storage_path, DocumentStatus.PENDING.value, now, now),
            )
        return self.get(document_id)

    def get(self, document_id: str) -> Optional[Document]:
        rows = self.db.query('SELECT * FROM documents WHERE id = ?', (document_id,))
        return self._row_to_document(rows[0]) if rows else None

    def first_ready_for_course(self, course_id: str) -> Optional[Document]:
        rows = self.db.query(
            'SELECT * FROM documents WHERE course_id = ? AND status = ? ORDER BY created_at, id LIMIT 1',
            (course_id, DocumentStatus.READY.value),
        )
        return self._row_to_document(rows[0]) if rows else None

    def update_status(self, document_id: str, status: DocumentStatus, error_message: Optional[str] = None,
                      page_count: Optional[int] = None, passage_count: Optional[int] = None) -> None:
        with self.db.transaction() as conn:
            conn.execute(
                'UPDATE documents SET status = ?, error_message = ?, '
                'page_count = COALESCE(?, page_count), passage_count = COALESCE(?, passage_count), updated_at = ? '
                'WHERE id = ?',
                (status.value, error_message, page_count, passage_count, to_db_time(utcnow()), document_id),
            )

    def delete(self, document_id: str) -> bool:
        """Delete the document; its passages go with it. False when the id is unknown."""
        with self.db.transaction() as conn:
            deleted = conn.execute('DELETE FROM documents WHERE id = ?', (document_id,)).rowcount
        return deleted > 0


class PassageStore:
    def __init__(self, db: Database):
        self.db = db

    def _row_to_passage(self, row: sqlite3.Row, with_embedding: bool = False) -> Passage:
        embedding = None
        if with_embedding and row['embedding'] is not None:
            embedding = tuple(float(x) for x in blob_to_vector(row['embedding']))
        return Passage(
            id=row['id'],
            source_document_id=row['document_id'],
            sequence_index=row['sequence_index'],
            page_number=row['page_number'],
            text=row['text'],
            embedding=embedding,
        )

    def replace_for_document(self, document_id: str, passages: Sequence[Passage]) -> int:
        """Drop every passage of the document and insert the new set in one transaction."""
        with self.db.transaction() as conn:
            conn.execute('DELETE FROM passages WHERE document_id = ?', (document_id,))
            conn.executemany(
                'INSERT INTO passages (id, document_id, sequence_index, page_number, text, token_count, embedding) VALUES (?, ?, ?, ?, ?, ?, ?)',
                [
                    (p.id, document_id, p.sequence_index, p.page_number, p.text, len(p.text.split()),
                     vector_to_blob(p.embedding) if p.embedding is not None else None)
                    for p in passages
                ],
            )
        return len(passages)

    def set_embeddings(self, pairs: Sequence[Tuple[str, Sequence[float]]]) -> None:
        with self.db.transaction() as conn:
            conn.executemany('UPDATE passages SET embedding = ? WHERE id = ?', [(vector_to_blob(vec), pid) for pid, vec in pairs])

    def list_for_document(self, document_id: str, with_embeddings: bool = False) -> List[Passage]:
        rows = self.db.query('SELECT * FROM passages WHERE document_id = ? ORDER BY sequence_index', (document_id,))
        return [self._row_to_passage(r, with_embeddings) for r in rows]

    def get_many(self, passage_ids: Sequence[str], ready_only: bool = False) -> List[Passage]:
        """Passages for the given ids in the order requested; unknown ids are skipped.

        With `ready_only`, passages of documents that are not ready are skipped too.
        """
        ids = list(dict.fromkeys(passage_ids))
        if not ids:
            return []
        placeholders = ','.join('?' for _ in ids)
        sql = f'SELECT p.* FROM passages p JOIN documents d ON d.id = p.document_id WHERE p.id IN ({placeholders})'
        params: List[Any] = list(ids)
        if ready_only:
            sql += ' AND d.status = ?'
            params.append(DocumentStatus.READY.value)
        rows = self.db.query(sql, params)
        by_id = {r['id']: self._row_to_passage(r) for r in rows}
        return [by_id[i] for i in ids if i in by_id]

    def search(self, query_vector: Sequence[float], course_id: Optional[str] = None, document_id: Optional[str] = None,
               k: int = 10) -> List[Tuple[Passage, float]]:
        """Top-k passages by cosine similarity among embedded passages of ready documents."""
        sql = (
            'SELECT p.* FROM passages p JOIN documents d ON d.id = p.document_id '
            'WHERE d.status = ? AND p.embedding IS NOT NULL'
        )
        params: List[Any] = [DocumentStatus.READY.value]
        if course_id is not None:
            sql += ' AND d.course_id = ?'
            params.append(course_id)
        if document_id is not None:
            sql += ' AND p.document_id = ?'
            params.append(document_id)
        rows = self.db.query(sql, params)
        if not rows or k <= 0:
            return []

        query = np.asarray(query_vector, dtype=np.float32)
        query_norm = float(np.linalg.norm(query))
        scored = []
        skipped = 0
        for row in rows:
            vec = blob_to_vector(row['embedding'])
            if vec.shape != query.shape:
                skipped += 1
                continue
            norm = float(np.linalg.norm(vec))
            score = 0.0 if norm == 0 or query_norm == 0 else float(np.dot(query, vec) / (norm * query_norm))
            scored.append((score, row))
        if skipped:
            LOG.warning('embedding_dimension_mismatch', extra={'skipped': skipped, 'query_dim': int(query.shape[0])})

        scored.sort(key=lambda item: (-item[0], item[1]['document_id'], item[1]['sequence_index']))
        return [(self._row_to_passage(row), score) for score, row in scored[:k]]


class ReviewStateStore:
    def __init__(self, db: Database):
        self.db = db

    def get(self, user_id: str, item_id: str) -> Optional[ReviewState]:
        rows = self.db.query('SELECT * FROM review_states WHERE user_id = ? AND item_id = ?', (user_id, item_id))
        if not rows:
            return None
        row = rows[0]
        return ReviewState(
            ease_factor=row['ease_factor'],
            interval_days=row['interval_days'],
            repetitions=row['repetitions'],
            due_at=from_db_time(row['due_at']),
            last_reviewed_at=from_db_time(row['last_reviewed_at']),
        )

    def _upsert(self, conn: sqlite3.Connection, user_id: str, item_id: str, state: ReviewState) -> None:
        conn.execute(
            'INSERT INTO review_states (user_id, item_id, ease_factor, interval_days, repetitions, due_at, last_reviewed_at) '
            'VALUES (?, ?, ?, ?, ?, ?, ?) '
            'ON CONFLICT (user_id, item_id) DO UPDATE SET ease_factor = excluded.ease_factor, '
            'interval_days = excluded.interval_days, repetitions = excluded.repetitions, '
            'due_at = excluded.due_at, last_reviewed_at = excluded.last_reviewed_at',
            (user_id, item_id, state.ease_factor, state.interval_days, state.repetitions,
             to_db_time(state.due_at), to_db_time(state.last_reviewed_at)),
        )

    def _insert_event(self, conn: sqlite3.Connection, event: ReviewEvent) -> None:
        conn.execute(
            'INSERT INTO review_events (user_id, item_id, rating, scheduled_interval_days, actual_interval_days, occurred_at) '
            'VALUES (?, ?, ?, ?, ?, ?)',
            (event.user_id, event.item_id, event.rating, event.scheduled_interval_days,
             event.actual_interval_days, to_db_time(event.occurred_at)),
        )

    def save_review(self, user_id: str, item_id: str, state: ReviewState, event: ReviewEvent) -> None:
        """Upsert the new state and append its event atomically."""
        with self.db.transaction() as conn:
            self._upsert(conn, user_id, item_id, state)
            self._insert_event(conn, event)

    def list_events(self, user_id: str, item_id: Optional[str] = None) -> List[ReviewEvent]:
        sql = 'SELECT * FROM review_events WHERE user_id = ?'
        params: List[Any] = [user_id]
        if item_id is not None:
            sql += ' AND item_id = ?'
            params.append(item_id)
        rows = self.db.query(sql + ' ORDER BY id', params)
        return [
            ReviewEvent(
                user_id=r['user_id'],
                item_id=r['item_id'],
                rating=r['rating'],
                scheduled_interval_days=r['scheduled_interval_days'],
                actual_interval_days=r['actual_interval_days'],
                occurred_at=from_db_time(r['occurred_at']),
            )
            for r in rows
        ]

    def due_cards(self, user_id: str, now: datetime, limit: int = 20) -> List[Dict[str, Any]]:
        """Cards never reviewed by the user or whose state is due, soonest first."""
        now_s = to_db_time(now)
        rows = self.db.query(
            'SELECT c.id AS card_id, c.prompt, c.answer, c.citations, c.is_scaffold, '
            'k.title AS concept_title, k.lesson_title, k.module_title, '
            's.ease_factor, s.interval_days, s.repetitions, s.due_at, s.last_reviewed_at '
            'FROM cards c JOIN concepts k ON k.id = c.concept_id '
            'LEFT JOIN review_states s ON s.item_id = c.id AND s.user_id = ? '
            'WHERE s.item_id IS NULL OR s.due_at <= ? '
            'ORDER BY COALESCE(s.due_at, ?), c.created_at, c.id LIMIT ?',
            (user_id, now_s, now_s, limit),
        )
        out = []
        for r in rows:
            out.append({
                'card_id': r['card_id'],
                'prompt': r['prompt'],
                'answer': r['answer'],
                'citations': json.loads(r['citations']) if r['citations'] else [],
                'is_scaffold': bool(r['is_scaffold']),
                'concept_title': r['concept_title'],
                'lesson_title': r['lesson_title'],
                'module_title': r['module_title'],
                'review_state': ReviewState(
                    ease_factor=r['ease_factor'] if r['ease_factor'] is not None else ReviewState.DEFAULT_EASE,
                    interval_days=r['interval_days'] or 0,
                    repetitions=r['repetitions'] or 0,
                    due_at=from_db_time(r['due_at']) or now,
                    last_reviewed_at=from_db_time(r['last_reviewed_at']),
                ),
            })
        return out

    def count_due(self, user_id: str, start: Optional[datetime], end: datetime) -> int:
        sql = 'SELECT COUNT(*) AS n FROM review_states WHERE user_id = ? AND due_at <= ?'
        params: List[Any] = [user_id, to_db_time(end)]
        if start is not None:
            sql += ' AND due_at >= ?'
            params.append(to_db_time(start))
        return int(self.db.query(sql, params)[0]['n'])


class ArtifactStore:
    """Persistence for grounded artifacts: concepts, cards, quizzes and explanations."""

    def __init__(self, db: Database):
        self.db = db

    def _row_to_concept(self, row: sqlite3.Row) -> Concept:
        return Concept(
            id=row['id'],
            course_id=row['course_id'],
            document_id=row['document_id'],
            module_title=row['module_title'],
            lesson_title=row['lesson_title'],
            title=row['title'],
            summary=row['summary'],
            citations=json.loads(row['citations']) if row['citations'] else [],
            page_range=row['page_range'] or '',
        )

    def _row_to_card(self, row: sqlite3.Row) -> Card:
        return Card(
            id=row['id'],
            concept_id=row['concept_id'],
            prompt=row['prompt'],
            answer=row['answer'],
            citations=json.loads(row['citations']) if row['citations'] else [],
            is_scaffold=bool(row['is_scaffold']),
            created_at=from_db_time(row['created_at']),
        )

    def replace_concepts(self, course_id: str, document_id: str, concepts: Sequence[Concept]) -> List[Concept]:
        now = to_db_time(utcnow())
        with self.db.transaction() as conn:
            conn.execute('DELETE FROM concepts WHERE course_id = ? AND document_id = ?', (course_id, document_id))
            conn.executemany(
                'INSERT INTO concepts (id, course_id, document_id, module_title, lesson_title, title, summary, citations, page_range, created_at) '
                'VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)',
                [(c.id, course_id, document_id, c.module_title, c.lesson_title, c.title, c.summary,
                  json.dumps(c.citations), c.page_range, now) for c in concepts],
            )
        return list(concepts)

    def get_concept(self, concept_id: str) -> Optional[Concept]:
        rows = self.db.query('SELECT * FROM concepts WHERE id = ?', (concept_id,))
        return self._row_to_concept(rows[0]) if rows else None

    def list_concepts(self, course_id: str, lesson_title: Optional[str] = None, module_title: Optional[str] = None) -> List[Concept]:
        sql = 'SELECT * FROM concepts WHERE course_id = ?'
        params: List[Any] = [course_id]
        if lesson_title is not None:
            sql += ' AND lesson_title = ?'
            params.append(lesson_title)
        if module_title is not None:
            sql += ' AND module_title = ?'
            params.append(module_title)
        rows = self.db.query(sql + ' ORDER BY created_at, rowid', params)
        return [self._row_to_concept(r) for r in rows]

    def replace_cards(self, concept_ids: Sequence[str], cards: Sequence[Card], scaffold: bool = False) -> List[Card]:
        """Replace the (scaffold or regular) cards of the given concepts."""
        now = utcnow()
        with self.db.transaction() as conn:
            if concept_ids:
                placeholders = ','.join('?' for _ in concept_ids)
                conn.execute(
                    f'DELETE FROM cards WHERE concept_id IN ({placeholders}) AND is_scaffold = ?',
                    [*concept_ids, int(scaffold)],
                )
            conn.executemany(
                'INSERT INTO cards (id, concept_id, prompt, answer, citations, is_scaffold, created_at) VALUES (?, ?, ?, ?, ?, ?, ?)',
                [(c.id, c.concept_id, c.prompt, c.answer, json.dumps(c.citations), int(scaffold), to_db_time(c.created_at or now)) for c in cards],
            )
        return list(cards)

    def list_cards(self, concept_ids: Sequence[str], scaffold: Optional[bool] = None) -> List[Card]:
        if not concept_ids:
            return []
        placeholders = ','.join('?' for _ in concept_ids)
        sql = f'SELECT * FROM cards WHERE concept_id IN ({placeholders})'
        params: List[Any] = list(concept_ids)
        if scaffold is not None:
            sql += ' AND is_scaffold = ?'
            params.append(int(scaffold))
        rows = self.db.query(sql + ' ORDER BY created_at, rowid', params)
        return [self._row_to_card(r) for r in rows]

    def get_card(self, card_id: str) -> Optional[Card]:
        rows = self.db.query('SELECT * FROM cards WHERE id = ?', (card_id,))
        return self._row_to_card(rows[0]) if rows else None

    def update_card(self, card_id: str, prompt: str, answer: str) -> Optional[Card]:
        """Rewrite a card's prompt and answer; citations and review history are kept."""
        with self.db.transaction() as conn:
            updated = conn.execute(
                'UPDATE cards SET prompt = ?, answer = ? WHERE id = ?', (prompt.strip(), answer.strip(), card_id),
            ).rowcount
        return self.get_card(card_id) if updated else None

    def delete_card(self, card_id: str) -> bool:
        """Delete a card together with every user's review state and events for it."""
        with self.db.transaction() as conn:
            deleted = conn.execute('DELETE FROM cards WHERE id = ?', (card_id,)).rowcount
            if deleted:
                conn.execute('DELETE FROM review_states WHERE item_id = ?', (card_id,))
                conn.execute('DELETE FROM review_events WHERE item_id = ?', (card_id,))
        return deleted > 0

    def replace_quiz(self, course_id: str, lesson_title: str, module_title: Optional[str], questions: List[dict]) -> str:
        quiz_id = str(uuid.uuid4())
        with self.db.transaction() as conn:
            if module_title is not None:
                conn.execute('DELETE FROM quizzes WHERE course_id = ? AND lesson_title = ? AND module_title = ?', (course_id, lesson_title, module_title))
            else:
                conn.execute('DELETE FROM quizzes WHERE course_id = ? AND lesson_title = ?', (course_id, lesson_title))
            conn.execute(
                'INSERT INTO quizzes (id, course_id, module_title, lesson_title, questions, created_at) VALUES (?, ?, ?, ?, ?, ?)',
                (quiz_id, course_id, module_title, lesson_title, json.dumps({'questions': questions}), to_db_time(utcnow())),
            )
        return quiz_id

    def latest_quiz(self, course_id: str, lesson_title: str, module_title: Optional[str] = None) -> Optional[Dict[str, Any]]:
        sql = 'SELECT * FROM quizzes WHERE course_id = ? AND lesson_title = ?'
        params: List[Any] = [course_id, lesson_title]
        if module_title is not None:
            sql += ' AND module_title = ?'
            params.append(module_title)
        rows = self.db.query(sql + ' ORDER BY created_at DESC, rowid DESC LIMIT 1', params)
        if not rows:
            return None
        row = rows[0]
        return {'id': row['id'], 'questions': json.loads(row['questions'])['questions'], 'created_at': from_db_time(row['created_at'])}

    def get_explanation(self, user_id: str, concept_id: str) -> Optional[Tuple[Dict[str, Any], datetime]]:
        rows = self.db.query('SELECT explanation, updated_at FROM concept_explanations WHERE user_id = ? AND concept_id = ?', (user_id, concept_id))
        if not rows:
            return None
        return json.loads(rows[0]['explanation']), from_db_time(rows[0]['updated_at'])

    def upsert_explanation(self, user_id: str, concept_id: str, explanation: Dict[str, Any], now: Optional[datetime] = None) -> None:
        ts = to_db_time(now or utcnow())
        with self.db.transaction() as conn:
            conn.execute(
                'INSERT INTO concept_explanations (user_id, concept_id, explanation, created_at, updated_at) VALUES (?, ?, ?, ?, ?) '
                'ON CONFLICT (user_id, concept_id) DO UPDATE SET explanation = excluded.explanation, updated_at = excluded.updated_at',
                (user_id, concept_id, json.dumps(explanation), ts, ts),
            )
