"""Strict response models for model-generated study material.

Every model forbids unknown keys and disables type coercion, so malformed model
output fails validation instead of being silently repaired. Each artifact
carries its own citations and names the content fields that identify it for
de-duplication.
"""
from typing import ClassVar, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator


class StrictModel(BaseModel):
    model_config = ConfigDict(extra='forbid', strict=True)


class Citation(StrictModel):
    passage_id: str = Field(..., min_length=1)
    page_number: Optional[int] = None
    quote: Optional[str] = None


class Artifact(StrictModel):
    primary_fields: ClassVar[Tuple[str, ...]] = ()

    citations: List[Citation] = Field(..., min_length=1)

    def dedupe_key(self) -> Tuple[str, ...]:
        return (type(self).__name__,) + tuple(str(getattr(self, f)).strip().lower() for f in self.primary_fields)


class ArtifactResponse(StrictModel):
    def artifacts(self) -> List[Artifact]:
        raise NotImplementedError


# Outline
class LessonPlan(StrictModel):
    lesson_title: str = Field(..., min_length=1)


class ModulePlan(StrictModel):
    module_title: str = Field(..., min_length=1)
    lessons: List[LessonPlan] = Field(..., min_length=1)


class OutlinePlan(StrictModel):
    """Uncited module/lesson skeleton; only the concepts under it are grounded."""
    modules: List[ModulePlan] = Field(..., min_length=1)


class ConceptEntry(Artifact):
    primary_fields: ClassVar[Tuple[str, ...]] = ('title',)

    module_title: str = Field(..., min_length=1)
    lesson_title: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    summary: str = Field(..., min_length=1)


class ConceptsResponse(ArtifactResponse):
    concepts: List[ConceptEntry] = Field(..., min_length=1, max_length=15)

    def artifacts(self):
        return list(self.concepts)


# Flashcards
class FlashcardArtifact(Artifact):
    primary_fields: ClassVar[Tuple[str, ...]] = ('prompt', 'answer')

    prompt: str = Field(..., min_length=1)
    answer: str = Field(..., min_length=1)


class CardsResponse(ArtifactResponse):
    cards: List[FlashcardArtifact] = Field(..., min_length=1, max_length=10)

    def artifacts(self):
        return list(self.cards)


# Quiz
class QuizQuestionArtifact(Artifact):
    primary_fields: ClassVar[Tuple[str, ...]] = ('question',)

    question: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    answer: str = Field(..., min_length=1)

    @model_validator(mode='after')
    def _check_options(self):
        if any(not o.strip() for o in self.options):
            raise ValueError('options must be non-empty strings')
        return self


class QuizResponse(ArtifactResponse):
    questions: List[QuizQuestionArtifact] = Field(..., min_length=3, max_length=5)

    def artifacts(self):
        return list(self.questions)


# Explanation
class ExplanationArtifact(Artifact):
    primary_fields: ClassVar[Tuple[str, ...]] = ('example',)

    bullets: List[str] = Field(..., min_length=2)
    example: str = Field(..., min_length=1)
    misconception: str = Field(..., min_length=1)


class ScaffoldCardArtifact(FlashcardArtifact):
    pass


class ExplanationResponse(ArtifactResponse):
    explanation: ExplanationArtifact
    scaffold_cards: List[ScaffoldCardArtifact] = Field(..., min_length=2, max_length=6)

    def artifacts(self):
        return [self.explanation, *self.scaffold_cards]


# Ask
class AnswerArtifact(Artifact):
    primary_fields: ClassVar[Tuple[str, ...]] = ('answer',)

    answer: str = Field(..., min_length=1)


class AnswerResponse(ArtifactResponse):
    answer: str = Field(..., min_length=1)
    citations: List[Citation] = Field(..., min_length=1)

    def artifacts(self):
        return [AnswerArtifact(answer=self.answer, citations=self.citations)]
