"""Wiring of stores, clients and pipelines into one service container."""
from dataclasses import dataclass
from typing import Optional

from studybuddy.config import Settings, get_settings
from studybuddy.flashcards import ReviewService
from studybuddy.ingestion import IngestionOrchestrator, read_pdf_pages
from studybuddy.retrieval import EmbeddingClient, Retriever
from studybuddy.semantic import (
    Answerer,
    CompletionClient,
    ConceptExplainer,
    FlashcardGenerator,
    GroundedGenerator,
    OutlineGenerator,
    QuizGenerator,
)
from studybuddy.storage import ArtifactStore, Database, DocumentStore, PassageStore, ReviewStateStore


@dataclass
class Services:
    settings: Settings
    db: Database
    documents: DocumentStore
    passages: PassageStore
    review_states: ReviewStateStore
    artifacts: ArtifactStore
    retriever: Retriever
    generator: GroundedGenerator
    orchestrator: IngestionOrchestrator
    outline: OutlineGenerator
    flashcards: FlashcardGenerator
    quizzes: QuizGenerator
    explainer: ConceptExplainer
    answerer: Answerer
    reviews: ReviewService


def build_services(settings: Optional[Settings] = None, db: Optional[Database] = None, embedder=None, completion=None,
                   page_reader=read_pdf_pages) -> Services:
    settings = settings or get_settings()
    db = db or Database(settings.DATABASE_PATH)
    documents = DocumentStore(db)
    passages = PassageStore(db)
    review_states = ReviewStateStore(db)
    artifacts = ArtifactStore(db)

    embedder = embedder or EmbeddingClient()
    completion = completion or CompletionClient()
    retriever = Retriever(embedder, passages)
    generator = GroundedGenerator(completion)

    return Services(
        settings=settings,
        db=db,
        documents=documents,
        passages=passages,
        review_states=review_states,
        artifacts=artifacts,
        retriever=retriever,
        generator=generator,
        orchestrator=IngestionOrchestrator(
            documents,
            passages,
            embedder,
            page_reader=page_reader,
            chunk_size=settings.CHUNK_SIZE,
            overlap=settings.CHUNK_OVERLAP,
            batch_size=settings.EMBED_BATCH_SIZE,
        ),
        outline=OutlineGenerator(documents, passages, retriever, generator, artifacts),
        flashcards=FlashcardGenerator(retriever, generator, artifacts),
        quizzes=QuizGenerator(retriever, generator, artifacts),
        explainer=ConceptExplainer(retriever, generator, artifacts, ttl_days=settings.EXPLANATION_TTL_DAYS),
        answerer=Answerer(retriever, generator),
        reviews=ReviewService(review_states),
    )
