"""Course outline generation.

A module/lesson plan is drafted from a sample of the document's passages, then
each lesson is grounded separately: its passages are retrieved by similarity and
the concepts generated from them must cite those passages. Lessons that end up
with no grounded concepts are reported back and skipped.
"""
import uuid
from dataclasses import dataclass, field
from typing import List

from studybuddy.errors import SourceNotReady
from studybuddy.models import AllowedPassageSet, Concept
from studybuddy.retrieval.retriever import RetrievalScope
from studybuddy.utils.logger import get_logger

from .grounding import GenerationStatus, PromptSpec, citations_to_dicts, page_range, request_validated
from .schemas import ConceptsResponse, OutlinePlan

LOG = get_logger()

SAMPLE_EVERY = 10
SAMPLE_MAX = 25
SAMPLE_CHARS = 800
LESSON_PASSAGES = 16

PLAN_SYSTEM = 'You design course outlines from source material. Return JSON only.'
CONCEPTS_SYSTEM = 'You extract key concepts from course material with citations. Return JSON only.'


@dataclass
class OutlineResult:
    course_id: str
    document_id: str
    modules: List[dict] = field(default_factory=list)
    skipped_lessons: List[dict] = field(default_factory=list)
    concept_count: int = 0

    def to_dict(self) -> dict:
        return {
            'course_id': self.course_id,
            'document_id': self.document_id,
            'modules': self.modules,
            'skipped_lessons': self.skipped_lessons,
            'concept_count': self.concept_count,
        }


def _plan_prompt(samples) -> str:
    lines = [
        'Draft a course outline with 2-5 modules, each with 1-5 lessons, covering the material below.',
        'Use short, specific titles.',
        'Material:',
    ]
    lines.extend(f'Page {p.page_number}: {p.text[:SAMPLE_CHARS]}' for p in samples)
    return '\n'.join(lines)


def _concepts_spec(module_title: str, lesson_title: str) -> PromptSpec:
    return PromptSpec(
        kind='concepts',
        system_instruction=CONCEPTS_SYSTEM,
        task='\n'.join([
            f'Module: {module_title}',
            f'Lesson: {lesson_title}',
            'Identify 5-15 key concepts for this lesson, each with a one or two sentence summary.',
        ]),
        response_model=ConceptsResponse,
    )


class OutlineGenerator:
    def __init__(self, documents, passages, retriever, generator, artifacts):
        self.documents = documents
        self.passages = passages
        self.retriever = retriever
        self.generator = generator
        self.artifacts = artifacts

    def _draft_plan(self, document_id: str) -> OutlinePlan:
        all_passages = self.passages.list_for_document(document_id)
        samples = all_passages[::SAMPLE_EVERY][:SAMPLE_MAX]
        if not samples:
            raise SourceNotReady(f'document {document_id} has no passages')
        return request_validated(self.generator.completion, PLAN_SYSTEM, _plan_prompt(samples), OutlinePlan, 'outline_plan')

    def generate_outline(self, course_id: str) -> OutlineResult:
        document = self.documents.first_ready_for_course(course_id)
        if document is None:
            raise SourceNotReady(f'no ready documents for course {course_id}')

        plan = self._draft_plan(document.id)
        result = OutlineResult(course_id=course_id, document_id=document.id)
        concepts: List[Concept] = []

        for module in plan.modules:
            lessons_out = []
            for lesson in module.lessons:
                query = f'Lesson: {lesson.lesson_title} - key concepts'
                found = self.retriever.retrieve(query, RetrievalScope(document_id=document.id), LESSON_PASSAGES)
                if not found:
                    result.skipped_lessons.append({'module_title': module.module_title, 'lesson_title': lesson.lesson_title, 'reason': 'no_passages'})
                    continue
                generated = self.generator.generate(_concepts_spec(module.module_title, lesson.lesson_title), AllowedPassageSet(found))
                if generated.status == GenerationStatus.NO_GROUNDED_RESULTS:
                    result.skipped_lessons.append({'module_title': module.module_title, 'lesson_title': lesson.lesson_title, 'reason': 'no_grounded_results'})
                    continue

                lesson_concepts = []
                for entry in generated.artifacts:
                    citations = citations_to_dicts(entry.citations)
                    # plan titles win over whatever the concept call echoed back
                    concept = Concept(
                        id=str(uuid.uuid4()),
                        course_id=course_id,
                        document_id=document.id,
                        module_title=module.module_title,
                        lesson_title=lesson.lesson_title,
                        title=entry.title.strip(),
                        summary=entry.summary.strip(),
                        citations=citations,
                        page_range=page_range(citations),
                    )
                    lesson_concepts.append(concept)
                concepts.extend(lesson_concepts)
                lessons_out.append({
                    'lesson_title': lesson.lesson_title,
                    'concepts': [self._concept_dict(c) for c in lesson_concepts],
                })
            result.modules.append({'module_title': module.module_title, 'lessons': lessons_out})

        self.artifacts.replace_concepts(course_id, document.id, concepts)
        result.concept_count = len(concepts)
        LOG.info('outline_generated', extra={
            'course_id': course_id,
            'document_id': document.id,
            'concept_count': len(concepts),
            'skipped_lessons': len(result.skipped_lessons),
        })
        return result

    @staticmethod
    def _concept_dict(concept: Concept) -> dict:
        return {
            'id': concept.id,
            'title': concept.title,
            'summary': concept.summary,
            'citations': concept.citations,
            'page_range': concept.page_range,
        }
