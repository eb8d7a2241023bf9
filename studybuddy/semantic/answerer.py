from dataclasses import dataclass, field
from typing import List, Optional

from studybuddy.errors import InvalidConfiguration
from studybuddy.models import AllowedPassageSet
from studybuddy.retrieval.retriever import RetrievalScope
from studybuddy.utils.logger import get_logger

from .grounding import GenerationStatus, PromptSpec, citations_to_dicts
from .schemas import AnswerResponse

LOG = get_logger()

MIN_QUESTION_LENGTH = 5
ASK_PASSAGES = 16

SYSTEM = 'Answer questions using only the provided course passages. Return JSON only.'


@dataclass
class AnswerResult:
    status: GenerationStatus
    answer: Optional[str] = None
    citations: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {'status': self.status.value, 'answer': self.answer, 'citations': self.citations}


class Answerer:
    """Single cited answer to a free-form question over a course's passages. Nothing is persisted."""

    def __init__(self, retriever, generator):
        self.retriever = retriever
        self.generator = generator

    def ask(self, course_id: str, question: str) -> AnswerResult:
        question = (question or '').strip()
        if len(question) < MIN_QUESTION_LENGTH:
            raise InvalidConfiguration(f'question must be at least {MIN_QUESTION_LENGTH} characters')

        passages = self.retriever.retrieve(question, RetrievalScope(course_id=course_id), ASK_PASSAGES)
        if not passages:
            return AnswerResult(status=GenerationStatus.NO_GROUNDED_RESULTS)

        spec = PromptSpec(
            kind='answer',
            system_instruction=SYSTEM,
            task='\n'.join([
                f'Question: {question}',
                'Answer in a few sentences. Each citation includes a short verbatim quote from the cited passage.',
            ]),
            response_model=AnswerResponse,
        )
        generated = self.generator.generate(spec, AllowedPassageSet(passages))
        if generated.status == GenerationStatus.NO_GROUNDED_RESULTS:
            return AnswerResult(status=generated.status)
        artifact = generated.artifacts[0]
        return AnswerResult(status=GenerationStatus.OK, answer=artifact.answer.strip(), citations=citations_to_dicts(artifact.citations))
