from dataclasses import dataclass, field
from typing import List, Optional

from studybuddy.errors import ConceptNotFound, SourceNotReady
from studybuddy.models import AllowedPassageSet
from studybuddy.utils.logger import get_logger

from .grounding import GenerationStatus, PromptSpec, citations_to_dicts
from .schemas import QuizResponse

LOG = get_logger()

MAX_QUIZ_PASSAGES = 18

SYSTEM = 'Generate a short multiple-choice quiz grounded in the passages. Return JSON only.'


@dataclass
class QuizResult:
    status: GenerationStatus
    quiz_id: Optional[str] = None
    questions: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {'status': self.status.value, 'quiz_id': self.quiz_id, 'questions': self.questions}


class QuizGenerator:
    def __init__(self, retriever, generator, artifacts):
        self.retriever = retriever
        self.generator = generator
        self.artifacts = artifacts

    def _allowed_passages(self, concepts) -> AllowedPassageSet:
        ids: List[str] = []
        for concept in concepts:
            for passage_id in concept.citation_ids:
                if passage_id not in ids:
                    ids.append(passage_id)
        return AllowedPassageSet(self.retriever.lookup(ids[:MAX_QUIZ_PASSAGES]))

    def generate_for_lesson(self, course_id: str, lesson_title: str, module_title: Optional[str] = None) -> QuizResult:
        concepts = self.artifacts.list_concepts(course_id, lesson_title, module_title)
        if not concepts:
            raise ConceptNotFound(f'no concepts found for lesson {lesson_title!r}')
        allowed = self._allowed_passages(concepts)
        if not len(allowed):
            raise SourceNotReady(f'no cited passages available for lesson {lesson_title!r}')

        spec = PromptSpec(
            kind='quiz',
            system_instruction=SYSTEM,
            task='\n'.join([
                f'Lesson: {lesson_title}',
                'Concepts: ' + '; '.join(c.title for c in concepts),
                'Write 3-5 multiple-choice questions. Each has at least two options and an answer equal to one of the options.',
            ]),
            response_model=QuizResponse,
        )
        generated = self.generator.generate(spec, allowed)
        if generated.status == GenerationStatus.NO_GROUNDED_RESULTS:
            LOG.warning('quiz_not_grounded', extra={'course_id': course_id, 'lesson_title': lesson_title})
            return QuizResult(status=generated.status)

        questions = [
            {
                'question': q.question.strip(),
                'options': [o.strip() for o in q.options],
                'answer': q.answer.strip(),
                'citations': citations_to_dicts(q.citations),
            }
            for q in generated.artifacts
        ]
        quiz_id = self.artifacts.replace_quiz(course_id, lesson_title, module_title, questions)
        LOG.info('quiz_generated', extra={'course_id': course_id, 'lesson_title': lesson_title, 'question_count': len(questions)})
        return QuizResult(status=generated.status, quiz_id=quiz_id, questions=questions)
