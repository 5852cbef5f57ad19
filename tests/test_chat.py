import pytest
from unittest.mock import AsyncMock, MagicMock

from api.services.chat import ProviderRouter
from lib.error_handler import AllProvidersFailedError, ProviderUnavailableError
from lib.openai_client import GrokProvider, OpenAITextProvider, style_prompt

def _history(turns):
    return [{'role': 'user', 'content': f"turn {i}"} for i in range(turns)]

@pytest.mark.parametrize("message,history,expected_reason", [
    ("Can you explain photosynthesis?", [], 'complex_intent'),
    ("my database keeps timing out", [], 'technical_terms'),
    ("ok", _history(6), 'long_history'),
    ("ok", _history(5), 'default'),
    ("x" * 501, [], 'long_message'),
    ("x" * 500, [], 'default'),
    ("hi", [], 'default'),
])
def test_select_provider(router, message, history, expected_reason):
    selection = router.select_provider(message, history)
    assert selection.provider == 'grok'
    assert selection.reason == expected_reason

def test_complex_intent_checked_before_technical_terms(router):
    selection = router.select_provider("explain the api", [])
    assert selection.reason == 'complex_intent'

def test_override_selects_registered_provider(router):
    selection = router.select_provider("explain this", [], {'provider': 'openai'})
    assert selection == ('openai', 'override')

def test_unknown_override_ignored(router):
    assert router.select_provider("hi", [], {'provider': 'claude'}).reason == 'default'

def test_router_requires_primary():
    with pytest.raises(ValueError):
        ProviderRouter({'openai': OpenAITextProvider()})

@pytest.mark.asyncio
async def test_route_uses_primary(router, grok):
    history = [{'role': 'user', 'content': 'earlier'}]

    reply = await router.route("hello", history)

    assert reply == "Test response"
    grok.get_conversational_response.assert_awaited_once_with("hello", history, None)

@pytest.mark.asyncio
async def test_route_falls_back_to_primary_once(router, grok):
    grok.get_conversational_response.side_effect = [
        ProviderUnavailableError("timeout", provider='grok'),
        "Recovered response"
    ]

    reply = await router.route("hello", [])

    assert reply == "Recovered response"
    assert grok.get_conversational_response.await_count == 2

@pytest.mark.asyncio
async def test_override_failure_falls_back_to_primary(router, grok, openai_text):
    reply = await router.route("hello", [], {'provider': 'openai'})

    assert reply == "Test response"
    openai_text.get_conversational_response.assert_awaited_once()
    grok.get_conversational_response.assert_awaited_once()

@pytest.mark.asyncio
async def test_all_providers_failed(router, grok):
    grok.get_conversational_response.side_effect = ProviderUnavailableError("down", provider='grok')

    with pytest.raises(AllProvidersFailedError) as exc_info:
        await router.route("hello", [])

    assert grok.get_conversational_response.await_count == 2
    assert len(exc_info.value.errors) == 2

@pytest.mark.asyncio
async def test_empty_response_counts_as_failure(router, grok):
    grok.get_conversational_response.side_effect = ["", "Second try"]

    assert await router.route("hello", []) == "Second try"

@pytest.mark.asyncio
async def test_grok_provider_builds_conversation():
    client = MagicMock()
    completion = MagicMock()
    completion.choices = [MagicMock()]
    completion.choices[0].message.content = "  Plain answer  "
    client.chat.completions.create.return_value = completion
    provider = GrokProvider(client, model='grok-3-latest', max_length=1600)
    history = [{'role': 'assistant', 'content': 'earlier reply'}]

    reply = await provider.get_conversational_response("question", history)

    assert reply == "Plain answer"
    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs['model'] == 'grok-3-latest'
    assert kwargs['temperature'] == 0.0
    assert kwargs['max_tokens'] == 2000
    assert kwargs['messages'][0] == {'role': 'system', 'content': style_prompt(1600)}
    assert kwargs['messages'][1:] == [
        {'role': 'assistant', 'content': 'earlier reply'},
        {'role': 'user', 'content': 'question'},
    ]

@pytest.mark.asyncio
async def test_grok_provider_wraps_errors():
    client = MagicMock()
    client.chat.completions.create.side_effect = RuntimeError("rate limited")
    provider = GrokProvider(client)

    with pytest.raises(ProviderUnavailableError) as exc_info:
        await provider.get_conversational_response("question", [])
    assert exc_info.value.provider == 'grok'

@pytest.mark.asyncio
async def test_grok_provider_rejects_empty_choice():
    client = MagicMock()
    client.chat.completions.create.return_value = MagicMock(choices=[])
    provider = GrokProvider(client)

    with pytest.raises(ProviderUnavailableError):
        await provider.get_conversational_response("question", [])

@pytest.mark.asyncio
async def test_openai_text_provider_not_available():
    with pytest.raises(ProviderUnavailableError):
        await OpenAITextProvider().get_conversational_response("hello", [])

def test_style_prompt_mentions_limit():
    assert "1600 characters" in style_prompt(1600)
