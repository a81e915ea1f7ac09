"""Idle nudge scheduler: welcome, follow-ups, cap, cancellation and the snapshot race."""
import asyncio

import pytest

from conftest import FakeGenerator, user_message
from langcampus.schemas.chat import Message
from langcampus.services.conversation import ConversationState
from langcampus.services.nudges import ARMED, FIRED, IDLE, IdleNudgeScheduler

WELCOME_DELAY = 0.02
NUDGE_DELAY = 0.05


def _solo(partner, messages=None):
    return ConversationState("chat-1", "solo", partner, owner_id="user-1", messages=messages)


def _scheduler(conv, generator, **overrides):
    options = {
        "welcome_delay": WELCOME_DELAY,
        "nudge_delay": NUDGE_DELAY,
        "max_messages": 3,
        "timeout_seconds": 2,
    }
    options.update(overrides)
    return IdleNudgeScheduler(conv, generator, **options)


def _ai(text="¿Y tú?"):
    return Message(sender="ai", text=text, sender_name="Lucía")


@pytest.mark.asyncio
async def test_silent_user_gets_welcome_then_two_nudges(partner, generator):
    conv = _solo(partner)
    scheduler = _scheduler(conv, generator)
    scheduler.start()
    assert scheduler.state == ARMED

    await asyncio.sleep(0.5)

    assert generator.welcome_calls == 1
    assert generator.nudge_calls == 2
    assert [m.text for m in conv.messages] == ["Hi, I'm Lucía!", "Still there?", "Still there?"]
    assert all(m.sender == "ai" for m in conv.messages)
    assert conv.nudges_issued == 3
    assert scheduler.state == IDLE

    stamps = [m.timestamp for m in conv.messages]
    assert stamps[1] - stamps[0] >= NUDGE_DELAY * 0.8
    assert stamps[2] - stamps[1] >= NUDGE_DELAY * 0.8
    scheduler.stop()


@pytest.mark.asyncio
async def test_not_armed_while_waiting_for_ai(partner, generator):
    conv = _solo(partner, messages=[user_message()])
    scheduler = _scheduler(conv, generator)
    scheduler.start()

    assert scheduler.state == IDLE
    await asyncio.sleep(0.1)
    assert generator.welcome_calls == 0
    assert generator.nudge_calls == 0
    scheduler.stop()


@pytest.mark.asyncio
async def test_user_reply_disarms_pending_nudge(partner, generator):
    conv = _solo(partner, messages=[_ai()])
    scheduler = _scheduler(conv, generator)
    scheduler.start()
    assert scheduler.state == ARMED

    conv.append(user_message("Bien, gracias"))

    assert scheduler.state == IDLE
    await asyncio.sleep(NUDGE_DELAY * 2)
    assert generator.nudge_calls == 0
    scheduler.stop()


@pytest.mark.asyncio
async def test_nudge_discarded_when_user_speaks_during_generation(partner, gate):
    generator = FakeGenerator(gate=gate)
    conv = _solo(partner, messages=[_ai()])
    scheduler = _scheduler(conv, generator, nudge_delay=0.02)
    scheduler.start()

    await asyncio.sleep(0.08)
    assert scheduler.state == FIRED

    conv.append(user_message("Perdón, aquí estoy"))
    gate.set()
    await asyncio.sleep(0.1)

    assert generator.nudge_calls == 1
    assert [m.sender for m in conv.messages] == ["ai", "user"]
    assert conv.nudges_issued == 0
    assert scheduler.state == IDLE
    scheduler.stop()


@pytest.mark.asyncio
async def test_pending_generation_cancels_timer_and_rearms_after(partner, generator):
    conv = _solo(partner, messages=[_ai()])
    scheduler = _scheduler(conv, generator)
    scheduler.start()
    assert scheduler.state == ARMED

    conv.begin_generation()
    assert scheduler.state == IDLE
    await asyncio.sleep(NUDGE_DELAY * 2)
    assert generator.nudge_calls == 0

    conv.end_generation()
    assert scheduler.state == ARMED
    scheduler.stop()


@pytest.mark.asyncio
async def test_failed_attempts_count_toward_cap(partner):
    generator = FakeGenerator(fail=True)
    conv = _solo(partner)
    scheduler = _scheduler(conv, generator, welcome_delay=0.01)
    scheduler.start()

    await asyncio.sleep(0.3)

    assert generator.welcome_calls == 3
    assert conv.messages == []
    assert conv.nudges_issued == 0
    assert scheduler.state == IDLE
    scheduler.stop()


@pytest.mark.asyncio
async def test_budget_already_spent_never_arms(partner, generator):
    conv = _solo(partner, messages=[_ai()])
    conv.nudges_issued = 3
    scheduler = _scheduler(conv, generator)
    scheduler.start()

    assert scheduler.state == IDLE


@pytest.mark.asyncio
async def test_stop_cancels_timer(partner, generator):
    conv = _solo(partner)
    scheduler = _scheduler(conv, generator)
    scheduler.start()
    scheduler.stop()

    assert scheduler.state == IDLE
    await asyncio.sleep(WELCOME_DELAY * 3)
    assert generator.welcome_calls == 0
    assert conv.messages == []


@pytest.mark.asyncio
async def test_closed_conversation_disarms(partner, generator):
    conv = _solo(partner)
    scheduler = _scheduler(conv, generator)
    scheduler.start()
    assert scheduler.state == ARMED

    conv.close()

    assert scheduler.state == IDLE
    await asyncio.sleep(WELCOME_DELAY * 3)
    assert generator.welcome_calls == 0
    assert conv.messages == []
