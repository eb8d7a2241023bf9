import os
import time
from datetime import datetime, timezone
from functools import lru_cache
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request, Response
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from studybuddy import __version__
from studybuddy.config import get_settings
from studybuddy.errors import (
    CardNotFound,
    ConceptNotFound,
    DocumentNotFound,
    IngestionFailed,
    InvalidConfiguration,
    InvalidRating,
    MalformedModelOutput,
    SourceNotReady,
    StudyBuddyError,
    TransientServiceError,
)
from studybuddy.flashcards import state_to_dict
from studybuddy.retrieval import RetrievalScope
from studybuddy.services import Services, build_services
from studybuddy.utils import get_logger, log_error, log_request, set_request_context

LOG = get_logger()

settings = get_settings()

app = FastAPI(title='StudyBuddy Core', version=__version__, description='Grounded study material and spaced repetition over course PDFs')

origins = [o.strip() for o in os.getenv('CORS_ORIGIN', '').split(',') if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ['*'],
    allow_credentials=True,
    allow_methods=['*'],
    allow_headers=['*'],
)

# error class -> HTTP status; first match wins
ERROR_STATUS = [
    (InvalidConfiguration, 400),
    (InvalidRating, 400),
    (DocumentNotFound, 404),
    (ConceptNotFound, 404),
    (CardNotFound, 404),
    (SourceNotReady, 409),
    (MalformedModelOutput, 502),
    (TransientServiceError, 503),
    (IngestionFailed, 500),
]


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services(settings)


def current_user(x_user_id: Optional[str] = Header(None, alias='X-User-Id')) -> str:
    return (x_user_id or '').strip() or settings.DEFAULT_USER_ID


def _request_id(request: Request) -> str:
    return getattr(request.state, 'request_id', None) or os.urandom(8).hex()


def _ok(request: Request, **payload) -> dict:
    return {'success': True, **payload, 'request_id': _request_id(request)}


@app.middleware('http')
async def add_request_id_and_logging(request: Request, call_next):
    # prefer incoming X-Request-ID header for cross-service tracing
    request_id = request.headers.get('x-request-id') or os.urandom(8).hex()
    request.state.request_id = request_id
    set_request_context(request_id, request.headers.get('x-user-id'))
    start = time.time()
    try:
        response: Response = await call_next(request)
    except Exception as e:
        log_error(e, {'request_id': request_id, 'path': request.url.path, 'method': request.method})
        body = {'success': False, 'error': {'message': 'Internal server error', 'type': 'InternalError', 'request_id': request_id}}
        return JSONResponse(status_code=500, content=body)
    duration = int((time.time() - start) * 1000)
    log_request(request_id, request.method, request.url.path, response.status_code, duration, request.client.host if request.client else None)
    response.headers['X-Request-ID'] = request_id
    return response


@app.exception_handler(StudyBuddyError)
async def studybuddy_error_handler(request: Request, exc: StudyBuddyError):
    status_code = next((code for cls, code in ERROR_STATUS if isinstance(exc, cls)), 500)
    if status_code >= 500:
        log_error(exc, {'error_type': type(exc).__name__, 'stage': exc.stage, 'path': request.url.path})
    error = {'message': exc.message, 'type': type(exc).__name__, 'stage': exc.stage, 'request_id': _request_id(request)}
    if isinstance(exc, IngestionFailed):
        error['document_id'] = exc.document_id
    return JSONResponse(status_code=status_code, content={'success': False, 'error': error})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    error = {
        'message': 'Invalid request',
        'type': 'RequestValidationError',
        'details': [{'loc': list(e.get('loc', ())), 'msg': e.get('msg')} for e in exc.errors()],
        'request_id': _request_id(request),
    }
    return JSONResponse(status_code=422, content={'success': False, 'error': error})


# Request models
class RegisterDocumentRequest(BaseModel):
    title: str = Field(..., min_length=1)
    storage_path: str = Field(..., min_length=1)
    course_id: Optional[str] = None


class ProcessDocumentRequest(BaseModel):
    force: bool = False
    path: Optional[str] = None


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=3)
    course_id: Optional[str] = None
    document_id: Optional[str] = None
    k: int = Field(12, ge=1, le=100)


class AskRequest(BaseModel):
    course_id: str = Field(..., min_length=1)
    question: str = Field(..., min_length=5)


class LessonRequest(BaseModel):
    course_id: str = Field(..., min_length=1)
    lesson_title: str = Field(..., min_length=1)
    module_title: Optional[str] = None


class HelpRequest(BaseModel):
    regenerate: bool = False


class ReviewRequest(BaseModel):
    item_id: str = Field(..., min_length=1)
    rating: str


class PassageIdsRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class UpdateCardRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


def _card_dict(card) -> dict:
    return {
        'id': card.id,
        'concept_id': card.concept_id,
        'prompt': card.prompt,
        'answer': card.answer,
        'citations': card.citations,
        'is_scaffold': card.is_scaffold,
    }


def _document_dict(document) -> dict:
    return {
        'id': document.id,
        'course_id': document.course_id,
        'title': document.title,
        'status': document.status.value,
        'error_message': document.error_message,
        'page_count': document.page_count,
        'passage_count': document.passage_count,
        'created_at': document.created_at.isoformat() if document.created_at else None,
        'updated_at': document.updated_at.isoformat() if document.updated_at else None,
    }


@app.get('/health')
async def health():
    return {'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat(), 'service': 'studybuddy', 'version': __version__}


@app.post('/documents', status_code=201)
def register_document(req: RegisterDocumentRequest, request: Request, services: Services = Depends(get_services)):
    document = services.documents.create(req.title, req.storage_path, course_id=req.course_id)
    LOG.info('document_registered', extra={'document_id': document.id, 'course_id': req.course_id})
    return _ok(request, document=_document_dict(document))


@app.get('/documents/{document_id}')
def get_document(document_id: str, request: Request, services: Services = Depends(get_services)):
    document = services.documents.get(document_id)
    if document is None:
        raise DocumentNotFound(f'document {document_id} not found')
    return _ok(request, document=_document_dict(document))


@app.post('/documents/{document_id}/process')
def process_document(document_id: str, request: Request, req: Optional[ProcessDocumentRequest] = None,
                     services: Services = Depends(get_services)):
    req = req or ProcessDocumentRequest()
    result = services.orchestrator.process_document(document_id, path=req.path, force=req.force)
    return _ok(request, ingestion=result.to_dict())


@app.delete('/documents/{document_id}')
def delete_document(document_id: str, request: Request, services: Services = Depends(get_services)):
    if not services.documents.delete(document_id):
        raise DocumentNotFound(f'document {document_id} not found')
    LOG.info('document_deleted', extra={'document_id': document_id})
    return _ok(request, id=document_id)


@app.post('/passages/by-ids')
def passages_by_ids(req: PassageIdsRequest, request: Request, services: Services = Depends(get_services)):
    # citation display resolves any stored id, whatever the document's state
    found = services.retriever.lookup(req.ids, ready_only=False)
    found.sort(key=lambda p: (p.page_number, p.sequence_index))
    return _ok(request, passages=[
        {'id': p.id, 'document_id': p.source_document_id, 'page_number': p.page_number, 'sequence_index': p.sequence_index, 'text': p.text}
        for p in found
    ])


@app.post('/search')
def search(req: SearchRequest, request: Request, services: Services = Depends(get_services)):
    hits = services.retriever.search(req.query, RetrievalScope(course_id=req.course_id, document_id=req.document_id), req.k)
    return _ok(request, results=[h.to_dict() for h in hits])


@app.post('/ask')
def ask(req: AskRequest, request: Request, services: Services = Depends(get_services)):
    result = services.answerer.ask(req.course_id, req.question)
    return _ok(request, **result.to_dict())


@app.post('/courses/{course_id}/generate-outline')
def generate_outline(course_id: str, request: Request, services: Services = Depends(get_services)):
    result = services.outline.generate_outline(course_id)
    return _ok(request, outline=result.to_dict())


@app.post('/lessons/flashcards')
def lesson_flashcards(req: LessonRequest, request: Request, services: Services = Depends(get_services)):
    result = services.flashcards.generate_for_lesson(req.course_id, req.lesson_title, req.module_title)
    return _ok(request, **result.to_dict())


@app.get('/lessons/cards')
def lesson_cards(course_id: str, lesson_title: str, request: Request, module_title: Optional[str] = None,
                 services: Services = Depends(get_services)):
    concepts = services.artifacts.list_concepts(course_id, lesson_title, module_title)
    cards = services.artifacts.list_cards([c.id for c in concepts])
    return _ok(request, cards=[_card_dict(c) for c in cards])


@app.patch('/cards/{card_id}')
def update_card(card_id: str, req: UpdateCardRequest, request: Request, services: Services = Depends(get_services)):
    if not req.prompt.strip() or not req.answer.strip():
        raise InvalidConfiguration('prompt and answer must not be blank')
    card = services.artifacts.update_card(card_id, req.prompt, req.answer)
    if card is None:
        raise CardNotFound(f'card {card_id} not found')
    LOG.info('card_updated', extra={'card_id': card_id})
    return _ok(request, card=_card_dict(card))


@app.delete('/cards/{card_id}')
def delete_card(card_id: str, request: Request, services: Services = Depends(get_services)):
    if not services.artifacts.delete_card(card_id):
        raise CardNotFound(f'card {card_id} not found')
    LOG.info('card_deleted', extra={'card_id': card_id})
    return _ok(request, id=card_id)


@app.get('/lessons/quiz')
def latest_lesson_quiz(course_id: str, lesson_title: str, request: Request, module_title: Optional[str] = None,
                       services: Services = Depends(get_services)):
    quiz = services.artifacts.latest_quiz(course_id, lesson_title, module_title)
    if quiz is not None:
        quiz = {**quiz, 'created_at': quiz['created_at'].isoformat() if quiz['created_at'] else None}
    return _ok(request, quiz=quiz)


@app.post('/lessons/quiz')
def lesson_quiz(req: LessonRequest, request: Request, services: Services = Depends(get_services)):
    result = services.quizzes.generate_for_lesson(req.course_id, req.lesson_title, req.module_title)
    return _ok(request, **result.to_dict())


@app.post('/concepts/{concept_id}/help')
def concept_help(concept_id: str, request: Request, req: Optional[HelpRequest] = None, user_id: str = Depends(current_user),
                 services: Services = Depends(get_services)):
    req = req or HelpRequest()
    result = services.explainer.explain(user_id, concept_id, regenerate=req.regenerate)
    return _ok(request, **result.to_dict())


@app.get('/daily/queue')
def daily_queue(request: Request, limit: int = 20, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    queue = services.reviews.daily_queue(user_id, limit=limit)
    return _ok(request, **queue.to_dict())


@app.post('/daily/review')
def daily_review(req: ReviewRequest, request: Request, user_id: str = Depends(current_user), services: Services = Depends(get_services)):
    state = services.reviews.record_review(user_id, req.item_id, req.rating)
    return _ok(request, review_state=state_to_dict(state))


if __name__ == '__main__':
    import uvicorn

    uvicorn.run('main:app', host=settings.HOST, port=settings.PORT, reload=settings.ENVIRONMENT == 'development')
