import pytest

from lib.error_handler import InvalidPayloadError
from lib.models import Role, TurnType

TEST_PHONE = "+1234567890"

def test_append_and_history_order(store):
    store.append(TEST_PHONE, Role.USER, "first")
    store.append(TEST_PHONE, Role.ASSISTANT, "second")
    store.append(TEST_PHONE, Role.USER, "third")

    history = store.history(TEST_PHONE)
    assert history == [
        {'role': 'user', 'content': 'first'},
        {'role': 'assistant', 'content': 'second'},
        {'role': 'user', 'content': 'third'},
    ]

def test_history_returns_most_recent_window(store):
    for i in range(15):
        store.append(TEST_PHONE, Role.USER, f"message {i}")

    history = store.history(TEST_PHONE, limit=10)
    assert len(history) == 10
    assert history[0]['content'] == "message 5"
    assert history[-1]['content'] == "message 14"

def test_history_is_per_phone(store):
    store.append(TEST_PHONE, Role.USER, "mine")
    store.append("+1987654321", Role.USER, "theirs")

    assert [t['content'] for t in store.history(TEST_PHONE)] == ["mine"]

def test_append_rejects_empty_content(store):
    with pytest.raises(InvalidPayloadError):
        store.append(TEST_PHONE, Role.USER, "   ")
    assert store.history(TEST_PHONE) == []

def test_append_truncates_long_content(store):
    turn = store.append(TEST_PHONE, Role.ASSISTANT, "x" * 2500)
    assert len(turn.content) == 2000

def test_append_keeps_type_and_metadata(store):
    turn = store.append(
        TEST_PHONE,
        Role.USER,
        "voice note",
        TurnType.AUDIO,
        {'media_url': 'https://example.com/a.ogg'}
    )

    assert turn.turn_type == TurnType.AUDIO
    assert turn.metadata == {'media_url': 'https://example.com/a.ogg'}
    assert turn.id

def test_purge(store):
    store.append(TEST_PHONE, Role.USER, "one")
    store.append(TEST_PHONE, Role.ASSISTANT, "two")

    assert store.purge(TEST_PHONE) == 2
    assert store.history(TEST_PHONE) == []
    assert store.purge(TEST_PHONE) == 0
