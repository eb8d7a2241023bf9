"""Per-user concept explanations with scaffold flashcards.

Explanations are cached per (user, concept) for `EXPLANATION_TTL_DAYS`; a
`regenerate` request bypasses the cache. Scaffold cards belong to the concept
and replace its previous scaffold set whenever a new explanation is stored.
"""
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from studybuddy.config import get_settings
from studybuddy.errors import ConceptNotFound, SourceNotReady
from studybuddy.models import AllowedPassageSet, Card, as_utc
from studybuddy.utils.logger import get_logger

from .grounding import GenerationStatus, PromptSpec, citations_to_dicts
from .schemas import ExplanationArtifact, ExplanationResponse, ScaffoldCardArtifact

LOG = get_logger()

SYSTEM = 'Explain the concept with citations and scaffold flashcards. Return JSON only.'


@dataclass
class ExplanationResult:
    status: GenerationStatus
    explanation: Optional[dict] = None
    scaffold_cards: List[Card] = field(default_factory=list)
    cached: bool = False

    def to_dict(self) -> dict:
        return {
            'status': self.status.value,
            'explanation': self.explanation,
            'scaffold_cards': [
                {'id': c.id, 'prompt': c.prompt, 'answer': c.answer, 'citations': c.citations, 'is_scaffold': True}
                for c in self.scaffold_cards
            ],
            'cached': self.cached,
        }


class ConceptExplainer:
    def __init__(self, retriever, generator, artifacts, ttl_days: Optional[int] = None):
        self.retriever = retriever
        self.generator = generator
        self.artifacts = artifacts
        self.ttl = timedelta(days=ttl_days if ttl_days is not None else get_settings().EXPLANATION_TTL_DAYS)

    def _spec(self, concept) -> PromptSpec:
        lines = [f'Concept: {concept.title}']
        if concept.summary:
            lines.append(f'Summary: {concept.summary}')
        lines.append(
            'Explain the concept in simple terms with at least two bullets, a concrete example and a common misconception. '
            'Add 2-6 short scaffold flashcards that build up to the concept. Keep citations to 1-3 passages per item.'
        )
        return PromptSpec(kind='explanation', system_instruction=SYSTEM, task='\n'.join(lines), response_model=ExplanationResponse)

    def explain(self, user_id: str, concept_id: str, regenerate: bool = False, now: Optional[datetime] = None) -> ExplanationResult:
        now = as_utc(now)
        concept = self.artifacts.get_concept(concept_id)
        if concept is None:
            raise ConceptNotFound(f'concept {concept_id} not found')

        if not regenerate:
            cached = self.artifacts.get_explanation(user_id, concept_id)
            if cached is not None and now - cached[1] < self.ttl:
                LOG.debug('explanation_cache_hit', extra={'concept_id': concept_id})
                return ExplanationResult(
                    status=GenerationStatus.OK,
                    explanation=cached[0],
                    scaffold_cards=self.artifacts.list_cards([concept_id], scaffold=True),
                    cached=True,
                )

        passages = self.retriever.lookup(concept.citation_ids)
        if not passages:
            raise SourceNotReady(f'concept {concept_id} has no citable passages')

        generated = self.generator.generate(self._spec(concept), AllowedPassageSet(passages))
        explanations = generated.of_type(ExplanationArtifact)
        if not explanations:
            # cards without their explanation are not stored either
            LOG.warning('explanation_not_grounded', extra={'concept_id': concept_id})
            return ExplanationResult(status=GenerationStatus.NO_GROUNDED_RESULTS)

        artifact = explanations[0]
        explanation = {
            'bullets': [b.strip() for b in artifact.bullets],
            'example': artifact.example.strip(),
            'misconception': artifact.misconception.strip(),
            'citations': citations_to_dicts(artifact.citations),
        }
        cards = [
            Card(
                id=str(uuid.uuid4()),
                concept_id=concept_id,
                prompt=c.prompt.strip(),
                answer=c.answer.strip(),
                citations=citations_to_dicts(c.citations),
                is_scaffold=True,
                created_at=now,
            )
            for c in generated.of_type(ScaffoldCardArtifact)
        ]
        self.artifacts.upsert_explanation(user_id, concept_id, explanation, now)
        self.artifacts.replace_cards([concept_id], cards, scaffold=True)
        LOG.info('explanation_generated', extra={'concept_id': concept_id, 'scaffold_cards': len(cards), 'regenerate': regenerate})
        return ExplanationResult(status=GenerationStatus.OK, explanation=explanation, scaffold_cards=cards)
