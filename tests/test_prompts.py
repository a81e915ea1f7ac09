"""Prompt building and response parsing."""
import pytest

from conftest import user_message
from langcampus.core.prompts import (
    TURN_JSON_INSTRUCTION,
    parse_json_response,
    parse_turn_response,
    partner_instruction,
    prepare_history,
)
from langcampus.schemas.chat import Message, UserProfile


def test_parse_turn_response_strips_fences():
    raw = '```json\n{"text": "¡Hola!", "correction": "Hola, ¿qué tal?"}\n```'
    assert parse_turn_response(raw) == {"text": "¡Hola!", "correction": "Hola, ¿qué tal?"}


def test_parse_turn_response_missing_correction():
    assert parse_turn_response('{"text": "Vale"}') == {"text": "Vale", "correction": ""}


@pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"text": "  "}'])
def test_parse_turn_response_rejects_unusable_output(raw):
    with pytest.raises(ValueError):
        parse_turn_response(raw)


def test_parse_json_response_list():
    assert parse_json_response('```\n[{"name": "Lucía"}]\n```') == [{"name": "Lucía"}]


def test_partner_instruction_includes_topic_and_group_note(partner):
    instruction = partner_instruction(
        partner,
        UserProfile(name="Sam", hobbies="hiking"),
        corrections_enabled=True,
        topic_context="Past tense",
        group=True,
    )

    assert "Lucía" in instruction
    assert "Sam" in instruction
    assert "Past tense" in instruction
    assert instruction.endswith(TURN_JSON_INSTRUCTION)


def test_prepare_history_keeps_tail_and_names_group_speakers():
    messages = [user_message(f"m{i}", name="Ana") for i in range(5)]
    messages.append(Message(sender="ai", text="respuesta"))

    history = prepare_history(messages, max_messages=3, group=True)

    assert [h["role"] for h in history] == ["user", "user", "model"]
    assert history[0]["parts"] == ["Ana: m3"]
    assert history[-1]["parts"] == ["respuesta"]
