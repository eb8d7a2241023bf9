import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from studybuddy.errors import ConceptNotFound
from studybuddy.models import AllowedPassageSet, Card
from studybuddy.utils.logger import get_logger

from .grounding import GenerationStatus, PromptSpec, citations_to_dicts
from .schemas import CardsResponse

LOG = get_logger()

MIN_TEXT_LENGTH = 8

SYSTEM = 'Generate concise, grounded flashcards. Return JSON only.'


@dataclass
class LessonCardsResult:
    cards: List[Card] = field(default_factory=list)
    skipped_concepts: List[str] = field(default_factory=list)
    dropped_short: int = 0

    def to_dict(self) -> dict:
        return {
            'cards_inserted': len(self.cards),
            'cards': [
                {'id': c.id, 'concept_id': c.concept_id, 'prompt': c.prompt, 'answer': c.answer, 'citations': c.citations}
                for c in self.cards
            ],
            'skipped_concepts': self.skipped_concepts,
        }


def _spec(title: str, summary: Optional[str]) -> PromptSpec:
    lines = [f'Concept: {title}']
    if summary:
        lines.append(f'Summary: {summary}')
    lines.append('Generate 6-10 flashcards grounded in the passages below. Each card has a question-style prompt and a short answer.')
    return PromptSpec(kind='flashcards', system_instruction=SYSTEM, task='\n'.join(lines), response_model=CardsResponse)


class FlashcardGenerator:
    """Regular (non-scaffold) cards for every concept of a lesson, cited to the concept's passages."""

    def __init__(self, retriever, generator, artifacts):
        self.retriever = retriever
        self.generator = generator
        self.artifacts = artifacts

    def generate_for_lesson(self, course_id: str, lesson_title: str, module_title: Optional[str] = None) -> LessonCardsResult:
        concepts = self.artifacts.list_concepts(course_id, lesson_title, module_title)
        if not concepts:
            raise ConceptNotFound(f'no concepts found for lesson {lesson_title!r}')

        result = LessonCardsResult()
        now = datetime.now(timezone.utc)
        for concept in concepts:
            passages = self.retriever.lookup(concept.citation_ids)
            if not passages:
                result.skipped_concepts.append(concept.id)
                continue
            generated = self.generator.generate(_spec(concept.title, concept.summary), AllowedPassageSet(passages))
            if generated.status == GenerationStatus.NO_GROUNDED_RESULTS:
                result.skipped_concepts.append(concept.id)
                continue
            for artifact in generated.artifacts:
                prompt = artifact.prompt.strip()
                answer = artifact.answer.strip()
                if len(prompt) < MIN_TEXT_LENGTH or len(answer) < MIN_TEXT_LENGTH:
                    result.dropped_short += 1
                    continue
                result.cards.append(Card(
                    id=str(uuid.uuid4()),
                    concept_id=concept.id,
                    prompt=prompt,
                    answer=answer,
                    citations=citations_to_dicts(artifact.citations),
                    created_at=now,
                ))

        self.artifacts.replace_cards([c.id for c in concepts], result.cards, scaffold=False)
        LOG.info('flashcards_generated', extra={
            'course_id': course_id,
            'lesson_title': lesson_title,
            'cards_inserted': len(result.cards),
            'dropped_short': result.dropped_short,
            'skipped_concepts': len(result.skipped_concepts),
        })
        return result
