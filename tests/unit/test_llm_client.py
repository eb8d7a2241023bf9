import pytest

from studybuddy.errors import CompletionUnavailable
from studybuddy.semantic import llm_client
from studybuddy.semantic.llm_client import CompletionClient
from studybuddy.utils.retry import RetryPolicy
from tests.fixtures.mock_openai import FakeOpenAI, api_error, chat_response


def _client(fake, attempts=4):
    return CompletionClient(client=fake, model='gpt-test', temperature=0.2, retry_policy=RetryPolicy(max_attempts=attempts, base_delay=0.01), sleep=lambda s: None)


@pytest.mark.unit
def test_complete_returns_raw_json_text():
    fake = FakeOpenAI(chat=[chat_response({'answer': 'yes'})])
    raw = _client(fake).complete('system text', 'user text', {'type': 'object'})
    assert raw == '{"answer": "yes"}'
    call = fake.chat.completions.calls[0]
    assert call['model'] == 'gpt-test'
    assert call['temperature'] == 0.2
    assert call['response_format'] == {'type': 'json_object'}
    assert call['messages'][0]['role'] == 'system'
    assert 'JSON schema' in call['messages'][0]['content']
    assert call['messages'][1] == {'role': 'user', 'content': 'user text'}


@pytest.mark.unit
def test_transient_errors_are_retried():
    fake = FakeOpenAI(chat=[api_error(), api_error(), chat_response({'ok': True})])
    assert _client(fake).complete('s', 'u') == '{"ok": true}'
    assert len(fake.chat.completions.calls) == 3


@pytest.mark.unit
def test_gives_up_after_attempt_budget():
    fake = FakeOpenAI(chat=[api_error('down')])
    with pytest.raises(CompletionUnavailable) as exc_info:
        _client(fake, attempts=3).complete('s', 'u')
    assert len(fake.chat.completions.calls) == 3
    assert exc_info.value.stage == 'completion'
    assert 'down' in exc_info.value.message


@pytest.mark.unit
def test_empty_content_is_returned_for_validation():
    fake = FakeOpenAI(chat=[chat_response('')])
    assert _client(fake).complete('s', 'u') == ''
    assert len(fake.chat.completions.calls) == 1


@pytest.mark.unit
def test_attempt_number_is_counted_per_call(monkeypatch):
    logged = []
    monkeypatch.setattr(llm_client, 'log_llm_call', lambda model, pt, ct, ms, attempt=1: logged.append(attempt))
    fake = FakeOpenAI(chat=[api_error(), chat_response({'ok': True}), chat_response({'ok': True})])
    client = _client(fake)
    client.complete('s', 'u')
    client.complete('s', 'u')
    assert logged == [2, 1]
