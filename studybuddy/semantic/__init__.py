"""Semantic subpackage: completion client, grounded generation and study-material pipelines"""

from .answerer import Answerer, AnswerResult
from .explainer import ConceptExplainer, ExplanationResult
from .flashcard_generator import FlashcardGenerator, LessonCardsResult
from .grounding import GenerationResult, GenerationStatus, GroundedGenerator, PromptSpec, build_context_block
from .llm_client import CompletionClient
from .outline_generator import OutlineGenerator, OutlineResult
from .quiz_generator import QuizGenerator, QuizResult

__all__ = [
    'Answerer',
    'AnswerResult',
    'ConceptExplainer',
    'ExplanationResult',
    'FlashcardGenerator',
    'LessonCardsResult',
    'GenerationResult',
    'GenerationStatus',
    'GroundedGenerator',
    'PromptSpec',
    'build_context_block',
    'CompletionClient',
    'OutlineGenerator',
    'OutlineResult',
    'QuizGenerator',
    'QuizResult',
]
