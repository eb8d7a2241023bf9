from datetime import datetime, timedelta

import pytest

from studybuddy.errors import ConceptNotFound, InvalidConfiguration, MalformedModelOutput, SourceNotReady
from studybuddy.models import Concept, DocumentStatus
from studybuddy.retrieval.retriever import Retriever
from studybuddy.semantic import (
    Answerer,
    ConceptExplainer,
    FlashcardGenerator,
    GenerationStatus,
    GroundedGenerator,
    OutlineGenerator,
    QuizGenerator,
)
from tests.fixtures.fake_services import ScriptedCompletion, passage_ids_in_prompt


def cite(ids, quote=None):
    return [{'passage_id': i, 'page_number': 99, 'quote': quote} for i in ids]


def concepts_reply(system, user):
    ids = passage_ids_in_prompt(user)
    return {'concepts': [
        {'module_title': 'echo', 'lesson_title': 'echo', 'title': 'Photosynthesis', 'summary': 'Light to sugar.', 'citations': cite(ids[:2])},
        {'module_title': 'echo', 'lesson_title': 'echo', 'title': 'Invented', 'summary': 'Not in the text.', 'citations': cite(['foreign-id'])},
    ]}


@pytest.fixture
def retriever(embedder, passages):
    return Retriever(embedder, passages)


def _seed_concept(artifacts, document, passages, concept_id='k1', lesson='Light', module='Energy', cited=None):
    ids = cited if cited is not None else [p.id for p in passages.list_for_document(document.id)][:2]
    concept = Concept(
        id=concept_id, course_id='course-1', document_id=document.id, module_title=module, lesson_title=lesson,
        title='Photosynthesis', summary='Light to sugar.', citations=cite(ids), page_range='p1-2',
    )
    artifacts.replace_concepts('course-1', document.id, [concept])
    return concept


@pytest.mark.unit
def test_outline_persists_grounded_concepts(ready_document, documents, passages, retriever, artifacts):
    completion = ScriptedCompletion([
        {'modules': [{'module_title': 'Energy', 'lessons': [{'lesson_title': 'Light'}, {'lesson_title': 'Respiration'}]}]},
        concepts_reply,
        {'concepts': [{'module_title': 'E', 'lesson_title': 'R', 'title': 'Ghost', 'summary': 'x', 'citations': cite(['nope'])}]},
    ])
    outline = OutlineGenerator(documents, passages, retriever, GroundedGenerator(completion), artifacts)
    result = outline.generate_outline('course-1')

    assert result.document_id == ready_document.id
    assert result.concept_count == 1
    assert result.skipped_lessons == [{'module_title': 'Energy', 'lesson_title': 'Respiration', 'reason': 'no_grounded_results'}]
    [stored] = artifacts.list_concepts('course-1')
    assert (stored.module_title, stored.lesson_title, stored.title) == ('Energy', 'Light', 'Photosynthesis')
    allowed = {p.id: p.page_number for p in passages.list_for_document(ready_document.id)}
    assert stored.citations
    for citation in stored.citations:
        assert citation['page_number'] == allowed[citation['passage_id']]
    assert stored.page_range.startswith('p')
    assert 'Lesson: Light' in completion.calls[1]['user']
    assert len(completion.calls) == 3


@pytest.mark.unit
def test_outline_requires_ready_document(documents, passages, retriever, artifacts):
    documents.create('Pending', '/tmp/p.pdf', course_id='course-1')
    outline = OutlineGenerator(documents, passages, retriever, GroundedGenerator(ScriptedCompletion()), artifacts)
    with pytest.raises(SourceNotReady):
        outline.generate_outline('course-1')


@pytest.mark.unit
def test_outline_rejects_malformed_plan(ready_document, documents, passages, retriever, artifacts):
    completion = ScriptedCompletion([{'modules': []}])
    outline = OutlineGenerator(documents, passages, retriever, GroundedGenerator(completion), artifacts)
    with pytest.raises(MalformedModelOutput):
        outline.generate_outline('course-1')


@pytest.mark.unit
def test_flashcards_filter_short_and_foreign(ready_document, passages, retriever, artifacts):
    concept = _seed_concept(artifacts, ready_document, passages)
    completion = ScriptedCompletion([lambda s, u: {'cards': [
        {'prompt': 'What does photosynthesis produce?', 'answer': 'Glucose and oxygen', 'citations': cite(passage_ids_in_prompt(u)[:1])},
        {'prompt': 'Short?', 'answer': 'Glucose and oxygen', 'citations': cite(passage_ids_in_prompt(u)[:1])},
        {'prompt': 'Where does it happen?', 'answer': 'In chloroplasts', 'citations': cite(['elsewhere'])},
    ]}])
    result = FlashcardGenerator(retriever, GroundedGenerator(completion), artifacts).generate_for_lesson('course-1', 'Light')

    assert [c.prompt for c in result.cards] == ['What does photosynthesis produce?']
    assert result.dropped_short == 1
    stored = artifacts.list_cards([concept.id], scaffold=False)
    assert [c.prompt for c in stored] == ['What does photosynthesis produce?']
    assert stored[0].citations[0]['passage_id'] in concept.citation_ids
    # only the concept's cited passages were offered
    assert passage_ids_in_prompt(completion.calls[0]['user']) == concept.citation_ids


@pytest.mark.unit
def test_flashcards_unknown_lesson(ready_document, retriever, artifacts):
    with pytest.raises(ConceptNotFound):
        FlashcardGenerator(retriever, GroundedGenerator(ScriptedCompletion()), artifacts).generate_for_lesson('course-1', 'Nope')


@pytest.mark.unit
def test_quiz_generated_from_lesson_citations(ready_document, passages, retriever, artifacts):
    concept = _seed_concept(artifacts, ready_document, passages)
    question = lambda text, ids: {'question': text, 'options': ['Glucose', 'Salt'], 'answer': 'Glucose', 'citations': cite(ids)}
    completion = ScriptedCompletion([lambda s, u: {'questions': [
        question('What is made?', passage_ids_in_prompt(u)[:1]),
        question('What is stored?', passage_ids_in_prompt(u)[1:2]),
        question('What is invented?', ['ghost']),
    ]}])
    result = QuizGenerator(retriever, GroundedGenerator(completion), artifacts).generate_for_lesson('course-1', 'Light', 'Energy')

    assert result.status == GenerationStatus.OK
    assert [q['question'] for q in result.questions] == ['What is made?', 'What is stored?']
    assert artifacts.latest_quiz('course-1', 'Light')['id'] == result.quiz_id
    assert passage_ids_in_prompt(completion.calls[0]['user']) == concept.citation_ids


@pytest.mark.unit
def test_quiz_with_too_few_questions_is_malformed(ready_document, passages, retriever, artifacts):
    _seed_concept(artifacts, ready_document, passages)
    completion = ScriptedCompletion([{'questions': [
        {'question': 'Only one?', 'options': ['a', 'b'], 'answer': 'a', 'citations': cite(['x'])},
    ]}])
    with pytest.raises(MalformedModelOutput):
        QuizGenerator(retriever, GroundedGenerator(completion), artifacts).generate_for_lesson('course-1', 'Light')


def explanation_reply(system, user):
    ids = passage_ids_in_prompt(user)
    return {
        'explanation': {'bullets': ['Plants capture light.', 'They store sugar.'], 'example': 'A leaf in sunlight.',
                        'misconception': 'Plants eat soil.', 'citations': cite(ids[:1])},
        'scaffold_cards': [
            {'prompt': 'What captures light?', 'answer': 'Chlorophyll', 'citations': cite(ids[:1])},
            {'prompt': 'What is stored?', 'answer': 'Sugar', 'citations': cite(ids[1:2])},
        ],
    }


@pytest.mark.unit
def test_explanation_cached_per_user(ready_document, passages, retriever, artifacts, now):
    _seed_concept(artifacts, ready_document, passages)
    completion = ScriptedCompletion([explanation_reply, explanation_reply])
    explainer = ConceptExplainer(retriever, GroundedGenerator(completion), artifacts, ttl_days=7)

    first = explainer.explain('u1', 'k1', now=now)
    assert not first.cached
    assert len(first.scaffold_cards) == 2
    assert all(c.is_scaffold for c in artifacts.list_cards(['k1']))

    cached = explainer.explain('u1', 'k1', now=now + timedelta(days=6))
    assert cached.cached
    assert cached.explanation == first.explanation
    assert len(completion.calls) == 1

    explainer.explain('u2', 'k1', now=now)
    assert len(completion.calls) == 2


@pytest.mark.unit
def test_explanation_regenerate_and_expiry(ready_document, passages, retriever, artifacts, now):
    _seed_concept(artifacts, ready_document, passages)
    completion = ScriptedCompletion([explanation_reply, explanation_reply, explanation_reply])
    explainer = ConceptExplainer(retriever, GroundedGenerator(completion), artifacts, ttl_days=7)
    explainer.explain('u1', 'k1', now=now)
    assert not explainer.explain('u1', 'k1', regenerate=True, now=now).cached
    assert not explainer.explain('u1', 'k1', now=now + timedelta(days=8)).cached
    assert len(completion.calls) == 3
    # scaffold set replaced, not accumulated
    assert len(artifacts.list_cards(['k1'], scaffold=True)) == 2


@pytest.mark.unit
def test_ungrounded_explanation_persists_nothing(ready_document, passages, retriever, artifacts, now):
    _seed_concept(artifacts, ready_document, passages)
    reply = lambda s, u: {
        'explanation': {'bullets': ['a', 'b'], 'example': 'e', 'misconception': 'm', 'citations': cite(['ghost'])},
        'scaffold_cards': [
            {'prompt': 'p1', 'answer': 'a1', 'citations': cite(passage_ids_in_prompt(u)[:1])},
            {'prompt': 'p2', 'answer': 'a2', 'citations': cite(passage_ids_in_prompt(u)[:1])},
        ],
    }
    explainer = ConceptExplainer(retriever, GroundedGenerator(ScriptedCompletion([reply])), artifacts, ttl_days=7)
    result = explainer.explain('u1', 'k1', now=now)
    assert result.status == GenerationStatus.NO_GROUNDED_RESULTS
    assert artifacts.get_explanation('u1', 'k1') is None
    assert artifacts.list_cards(['k1']) == []


@pytest.mark.unit
def test_explanation_errors(ready_document, passages, retriever, artifacts):
    explainer = ConceptExplainer(retriever, GroundedGenerator(ScriptedCompletion()), artifacts, ttl_days=7)
    with pytest.raises(ConceptNotFound):
        explainer.explain('u1', 'missing')
    _seed_concept(artifacts, ready_document, passages, cited=[])
    with pytest.raises(SourceNotReady):
        explainer.explain('u1', 'k1')


@pytest.mark.unit
def test_ask_returns_cited_answer(ready_document, retriever):
    completion = ScriptedCompletion([lambda s, u: {
        'answer': 'Chlorophyll absorbs red and blue light.',
        'citations': cite(passage_ids_in_prompt(u)[:1], quote='absorbs red and blue light') + cite(['made-up']),
    }])
    result = Answerer(retriever, GroundedGenerator(completion)).ask('course-1', 'What does chlorophyll absorb?')
    assert result.status == GenerationStatus.OK
    assert len(result.citations) == 1
    assert result.citations[0]['quote'] == 'absorbs red and blue light'
    assert result.citations[0]['page_number'] != 99


@pytest.mark.unit
def test_ask_validation_and_empty_course(ready_document, retriever):
    answerer = Answerer(retriever, GroundedGenerator(ScriptedCompletion()))
    with pytest.raises(InvalidConfiguration):
        answerer.ask('course-1', 'Why')
    assert answerer.ask('empty-course', 'What is anything?').status == GenerationStatus.NO_GROUNDED_RESULTS


@pytest.mark.unit
def test_explanation_cache_accepts_naive_now(ready_document, passages, retriever, artifacts):
    _seed_concept(artifacts, ready_document, passages)
    completion = ScriptedCompletion([explanation_reply])
    explainer = ConceptExplainer(retriever, GroundedGenerator(completion), artifacts, ttl_days=7)
    explainer.explain('u1', 'k1', now=datetime(2024, 3, 1, 9))
    assert explainer.explain('u1', 'k1', now=datetime(2024, 3, 2, 9)).cached
    assert len(completion.calls) == 1


@pytest.mark.unit
def test_quiz_ignores_passages_of_a_document_being_reingested(ready_document, documents, passages, retriever, artifacts):
    _seed_concept(artifacts, ready_document, passages)
    documents.update_status(ready_document.id, DocumentStatus.PROCESSING)
    completion = ScriptedCompletion()
    with pytest.raises(SourceNotReady):
        QuizGenerator(retriever, GroundedGenerator(completion), artifacts).generate_for_lesson('course-1', 'Light')
    assert completion.calls == []
