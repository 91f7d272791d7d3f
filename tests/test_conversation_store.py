from __future__ import annotations

from dataclasses import fields

import pytest

from edgellm.conversation_store import ConversationStore
from edgellm.models import Turn


@pytest.fixture
def store() -> ConversationStore:
    return ConversationStore("system prompt")


def test_starts_with_system_prompt(store):
    assert len(store) == 1
    assert store.turns[0].role == "system"
    assert store.turns[0].content == "system prompt"


def test_append_returns_index_and_preserves_order(store):
    assert store.append(Turn(role="user", content="hi")) == 1
    assert store.append(Turn(role="assistant", content="hello")) == 2
    assert [turn.role for turn in store.turns] == ["system", "user", "assistant"]


def test_amend_last_updates_assistant_in_place(store):
    store.append(Turn(role="user", content="hi"))
    store.append(Turn(role="assistant", content=""))

    assert store.amend_last(content="Hel")
    assert store.amend_last(content="Hello", thought="greeting")

    assert len(store) == 3
    assert store.last.content == "Hello"
    assert store.last.thought == "greeting"


def test_amend_last_never_touches_a_user_turn(store):
    store.append(Turn(role="user", content="hi"))
    store.begin_stream()

    assert store.amend_last(content="overwritten") is False
    assert store.last.content == "hi"


def test_amend_last_on_empty_store_is_noop(store):
    store._turns.clear()
    assert store.amend_last(content="x") is False
    assert len(store) == 0


def test_toggle_thought_visibility_only_flips_flag(store):
    store.append(Turn(role="assistant", content="Answer", thought="why"))

    assert store.toggle_thought_visibility(1) is True
    turn = store.turns[1]
    assert turn.thought_visible
    assert turn.content == "Answer"
    assert turn.thought == "why"
    assert store.toggle_thought_visibility(1) is False


def test_toggle_thought_visibility_rejects_bad_index(store):
    with pytest.raises(IndexError):
        store.toggle_thought_visibility(5)


def test_turns_are_copies(store):
    store.append(Turn(role="user", content="hi"))
    store.turns[1].content = "changed"
    assert store.turns[1].content == "hi"


def test_reset_restores_initial_state(store):
    store.append(Turn(role="user", content="hi"))
    store.append(Turn(role="assistant", content="hello"))
    store.record_throughput(2, 9.876)
    store.begin_stream()

    store.reset()

    assert [turn.content for turn in store.turns] == ["system prompt"]
    assert store.throughput_samples == []
    assert not store.streaming


def test_reset_with_new_initial_requires_system_first(store):
    with pytest.raises(ValueError):
        store.reset([Turn(role="user", content="hi")])

    store.reset([Turn(role="system", content="be brief")])
    assert store.turns[0].content == "be brief"


def test_throughput_is_rounded_and_keyed_by_turn(store):
    store.append(Turn(role="user", content="hi"))
    store.append(Turn(role="assistant", content="a"))
    store.append(Turn(role="user", content="again"))
    store.append(Turn(role="assistant", content="b"))
    store.record_throughput(4, 20.4567)

    assert store.throughput_for(2) is None
    assert store.throughput_for(4) == pytest.approx(20.46)
    assert store.throughput_samples == [pytest.approx(20.46)]


def test_listeners_receive_index_and_snapshot(store):
    events = []
    store.subscribe(lambda index, turn: events.append((index, turn.role, turn.content)))

    store.append(Turn(role="assistant", content=""))
    store.amend_last(content="x")

    assert events == [(1, "assistant", ""), (1, "assistant", "x")]


def test_messages_exclude_thoughts(store):
    store.append(Turn(role="assistant", content="Answer", thought="hidden"))
    assert store.messages() == [
        {"role": "system", "content": "system prompt"},
        {"role": "assistant", "content": "Answer"},
    ]


def test_turn_holds_only_conversation_fields(store):
    store.append(Turn(role="assistant", content="Answer", thought="why"))

    assert store.last == Turn(role="assistant", content="Answer", thought="why")
    assert [f.name for f in fields(Turn)] == ["role", "content", "thought", "thought_visible"]
