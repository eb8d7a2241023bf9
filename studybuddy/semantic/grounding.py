"""Grounded generation: one completion call over an allow-listed passage set.

The generator builds a context block from the allow-list only, asks the completion
service for JSON matching a strict response model, and then enforces grounding
on what comes back:

- citations of passages outside the allow-list are dropped, never guessed;
- surviving citations get the passage's true page number;
- repeated citations of one passage inside an artifact collapse to the first;
- artifacts left without citations are discarded;
- artifacts with the same primary content (trimmed, case-insensitive) keep the first.

Zero survivors is reported as `GenerationStatus.NO_GROUNDED_RESULTS`, not raised.
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Type, TypeVar

from pydantic import BaseModel, ValidationError

from studybuddy.errors import InvalidConfiguration, MalformedModelOutput
from studybuddy.models import AllowedPassageSet
from studybuddy.utils.logger import get_logger, log_generation_result

from .schemas import Artifact, ArtifactResponse, Citation

LOG = get_logger()

M = TypeVar('M', bound=BaseModel)

CITATION_RULE = (
    'Cite only the passage ids listed under Passages, using the exact id strings. '
    'Every item must include at least one citation. Do not invent ids or page numbers.'
)


class GenerationStatus(str, Enum):
    OK = 'ok'
    NO_GROUNDED_RESULTS = 'no_grounded_results'


@dataclass(frozen=True)
class PromptSpec:
    kind: str
    system_instruction: str
    task: str
    response_model: Type[ArtifactResponse]


@dataclass
class GenerationResult:
    status: GenerationStatus
    artifacts: List[Artifact] = field(default_factory=list)
    dropped_ungrounded: int = 0
    dropped_duplicates: int = 0
    foreign_citations: int = 0

    @property
    def ok(self) -> bool:
        return self.status == GenerationStatus.OK

    def of_type(self, cls: Type[Artifact]) -> List[Artifact]:
        return [a for a in self.artifacts if type(a) is cls]


def build_context_block(allowed: AllowedPassageSet) -> str:
    return '\n'.join(f'Passage {p.id} (page {p.page_number}): {p.text}' for p in allowed)


def build_user_prompt(spec: PromptSpec, allowed: AllowedPassageSet) -> str:
    return '\n'.join([
        spec.task,
        CITATION_RULE,
        'Passages:',
        build_context_block(allowed),
    ])


def parse_response(raw: str, response_model: Type[M], kind: str) -> M:
    try:
        return response_model.model_validate_json(raw)
    except ValidationError as e:
        LOG.warning('malformed_model_output', extra={'kind': kind, 'error_count': e.error_count()})
        raise MalformedModelOutput(f'{kind} response failed validation: {e.error_count()} error(s)', raw=raw) from e


def request_validated(completion, system_instruction: str, user_prompt: str, response_model: Type[M], kind: str) -> M:
    """Run one completion and validate it strictly against `response_model`."""
    raw = completion.complete(system_instruction, user_prompt, response_model.model_json_schema())
    return parse_response(raw, response_model, kind)


def page_range(citations: Iterable[dict]) -> str:
    pages = sorted({c['page_number'] for c in citations if c.get('page_number') is not None})
    if not pages:
        return ''
    if pages[0] == pages[-1]:
        return f'p{pages[0]}'
    return f'p{pages[0]}-{pages[-1]}'


def ground_artifacts(kind: str, artifacts: List[Artifact], allowed: AllowedPassageSet) -> GenerationResult:
    kept: List[Artifact] = []
    seen = set()
    dropped_ungrounded = dropped_duplicates = foreign = 0

    for artifact in artifacts:
        citations: List[Citation] = []
        cited = set()
        for citation in artifact.citations:
            passage_id = citation.passage_id.strip()
            if passage_id not in allowed:
                foreign += 1
                continue
            if passage_id in cited:
                continue
            cited.add(passage_id)
            citations.append(citation.model_copy(update={'passage_id': passage_id, 'page_number': allowed.page_of(passage_id)}))
        if not citations:
            dropped_ungrounded += 1
            continue
        key = artifact.dedupe_key()
        if key in seen:
            dropped_duplicates += 1
            continue
        seen.add(key)
        kept.append(artifact.model_copy(update={'citations': citations}))

    log_generation_result(kind, len(allowed), len(artifacts), len(kept), dropped_ungrounded, dropped_duplicates, foreign)
    return GenerationResult(
        status=GenerationStatus.OK if kept else GenerationStatus.NO_GROUNDED_RESULTS,
        artifacts=kept,
        dropped_ungrounded=dropped_ungrounded,
        dropped_duplicates=dropped_duplicates,
        foreign_citations=foreign,
    )


class GroundedGenerator:
    def __init__(self, completion):
        self.completion = completion

    def generate(self, spec: PromptSpec, allowed: AllowedPassageSet) -> GenerationResult:
        if len(allowed) == 0:
            raise InvalidConfiguration(f'{spec.kind}: allowed passage set is empty')
        user_prompt = build_user_prompt(spec, allowed)
        response = request_validated(self.completion, spec.system_instruction, user_prompt, spec.response_model, spec.kind)
        return ground_artifacts(spec.kind, response.artifacts(), allowed)


def citations_to_dicts(citations: List[Citation]) -> List[dict]:
    return [c.model_dump() for c in citations]
