"""Turn coordinator: single in-flight generation, fallback on failure, mention detection."""
import asyncio

import pytest

from conftest import FakeGenerator, user_message
from langcampus.services.conversation import ConversationState
from langcampus.services.turns import FALLBACK_REPLY, TurnCoordinator, is_mention


def _solo(partner, **kwargs):
    return ConversationState("chat-1", "solo", partner, owner_id="user-1", **kwargs)


@pytest.mark.asyncio
async def test_turn_appends_user_message_then_reply(partner, generator):
    conv = _solo(partner)
    turns = TurnCoordinator(generator, timeout_seconds=2)

    reply = await turns.request_turn(conv, user_message("Hola"))

    assert reply is not None
    assert [m.sender for m in conv.messages] == ["user", "ai"]
    assert conv.messages[-1].text == "¡Hola! ¿Qué tal?"
    assert conv.messages[-1].sender_name == "Lucía"
    assert conv.pending_generation is False
    # Context handed to generation includes the optimistic user message
    assert generator.turn_calls[0]["context"][-1].text == "Hola"


@pytest.mark.asyncio
async def test_corrections_follow_conversation_setting(partner, generator):
    conv = _solo(partner, corrections_enabled=True)
    turns = TurnCoordinator(generator, timeout_seconds=2)

    await turns.request_turn(conv, user_message("Hola que tal"))

    assert generator.turn_calls[0]["corrections_enabled"] is True
    assert conv.messages[-1].correction == "Hola, ¿qué tal?"


@pytest.mark.asyncio
async def test_generation_failure_yields_exactly_one_fallback(partner):
    conv = _solo(partner)
    turns = TurnCoordinator(FakeGenerator(fail=True), timeout_seconds=2)

    reply = await turns.request_turn(conv, user_message())

    assert reply.text == FALLBACK_REPLY
    assert [m.text for m in conv.messages] == ["Hola", FALLBACK_REPLY]
    assert conv.pending_generation is False


@pytest.mark.asyncio
async def test_second_request_while_pending_is_ignored(partner, gate):
    generator = FakeGenerator(gate=gate)
    conv = _solo(partner)
    turns = TurnCoordinator(generator, timeout_seconds=5)

    first = asyncio.create_task(turns.request_turn(conv, user_message("uno")))
    await asyncio.sleep(0.05)
    assert conv.pending_generation is True

    second = await turns.request_turn(conv, user_message("dos"))
    assert second is None

    gate.set()
    await first

    assert [m.text for m in conv.messages] == ["uno", "¡Hola! ¿Qué tal?"]
    assert len(generator.turn_calls) == 1
    assert conv.pending_generation is False


@pytest.mark.asyncio
async def test_timeout_releases_guard_with_fallback(partner, gate):
    conv = _solo(partner)
    turns = TurnCoordinator(FakeGenerator(gate=gate), timeout_seconds=0.05)

    reply = await turns.request_turn(conv, user_message())
    gate.set()

    assert reply.text == FALLBACK_REPLY
    assert conv.pending_generation is False

    # The guard is free again
    assert conv.begin_generation() is True


@pytest.mark.asyncio
async def test_listeners_see_pending_flag_around_generation(partner, generator):
    conv = _solo(partner)
    seen = []
    conv.subscribe(lambda c: seen.append((len(c.messages), c.pending_generation)))

    await TurnCoordinator(generator, timeout_seconds=2).request_turn(conv, user_message())

    assert seen[0] == (0, True)
    assert (1, True) in seen
    assert seen[-1] == (2, False)


@pytest.mark.parametrize("text,expected", [
    ("@bot ¿cómo se dice hello?", True),
    ("  @Bot hola", False),
    ("@BOT", True),
    ("hola @bot", False),
    ("", False),
])
def test_is_mention(text, expected):
    assert is_mention(text, "@bot") is expected


@pytest.mark.asyncio
async def test_held_guard_is_left_to_the_caller(partner, generator):
    conv = _solo(partner)
    turns = TurnCoordinator(generator, timeout_seconds=2)
    assert conv.begin_generation() is True

    reply = await turns.request_turn(conv, user_message("Hola"), guard_held=True)

    assert reply.text == "¡Hola! ¿Qué tal?"
    assert [m.sender for m in conv.messages] == ["user", "ai"]
    assert conv.pending_generation is True
    conv.end_generation()
    assert conv.pending_generation is False
