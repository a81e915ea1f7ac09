"""Prompt templates for LLM interactions."""
import json
import re
from typing import Any, Dict, List, Optional

from langcampus.schemas.chat import Message, Partner, UserProfile

# Base schema for JSON output of a chat turn (used in system instruction)
TURN_JSON_INSTRUCTION = """
Respond ONLY in valid JSON format with these keys:
{
  "text": "your conversational reply",
  "correction": "the corrected version of the learner's last message; empty string if no correction is needed"
}
"""

MESSAGE_JSON_INSTRUCTION = """
Respond ONLY in valid JSON format with one key:
{
  "text": "your message"
}
"""

PARTNER_PROMPT = """You are {name}, a friendly language exchange partner. Your native language is {native_language} and you are learning {learning_language}.
Your interests: {interests}.

You are talking to {user_name}. Their hobbies are {hobbies}, and their bio is: "{bio}". Use this information to make the conversation more personal and engaging.

Your personality is encouraging and curious. Keep your response concise and natural, like a real chat message. Write in {native_language}.
"""

CORRECTIONS_ON = "The learner has asked for corrections. If their last message has any grammatical errors, put the corrected sentence in 'correction'."
CORRECTIONS_OFF = "Respond naturally to the learner's last message. Leave 'correction' empty."

GROUP_NOTE = "This is a group chat with up to three learners. Messages are prefixed with the sender's name. Only answer the message that mentions you."

TOPIC_NOTE = "The current lesson is: {topic}. Keep your answer anchored to this lesson."

WELCOME_PROMPT = """You are {name}, a language exchange partner whose native language is {native_language}. Your interests: {interests}.
A new learner just opened a chat with you and has not said anything yet. Write a short, warm first message in {native_language} that introduces yourself and asks them one easy question.
"""

NUDGE_PROMPT = """The learner has gone quiet. Write one short, friendly follow-up in {native_language} that picks up the conversation so far and invites them to reply.
If the learner seems to be a beginner you may add a brief hint in {user_native_language} in parentheses. Do not repeat your previous message.
"""

PARTNERS_PROMPT = """Generate a diverse list of 6 JSON objects representing language exchange partners.
My native language is {native_language}. I want to learn {target_language}.
My interests are: {interests}.
Each partner should have a unique, culturally appropriate name.
Their "native_language" should be {target_language} and their "learning_language" should be {native_language}.
Each object has keys "name", "native_language", "learning_language" and "interests" (a list of strings).
Generate a diverse set of interests for them, some might align with mine.
Return ONLY the JSON array."""

LESSON_PROMPT = """You are an expert language teacher. Your student's native language is {native_language}.
Your task is to provide a clear and comprehensive explanation for a language learner about a topic in their TARGET language, which is {target_language}.

Write the entire explanation in the student's NATIVE language ({native_language}). All examples of the target language must be presented in {target_language}, followed by a translation into {native_language}.

Topic Type: {kind}
Selected Topic: "{topic}"

Use Markdown for formatting (headings, bold text, lists).
Return ONLY the lesson content in Markdown format. Do not include any conversational pleasantries or introductions."""

QUIZ_PROMPT = """Create a multiple-choice quiz with exactly 8 questions for a learner of {language}.
Topic Type: {kind}
Topic: "{topic}"
Return ONLY a JSON array. Each item has keys "question", "options" (exactly 4 strings) and "correct_answer" (one of the options)."""


def partner_instruction(
    partner: Partner,
    profile: Optional[UserProfile],
    corrections_enabled: bool,
    topic_context: Optional[str] = None,
    group: bool = False,
) -> str:
    """System instruction for a chat turn."""
    profile = profile or UserProfile()
    parts = [
        PARTNER_PROMPT.format(
            name=partner.name,
            native_language=partner.native_language,
            learning_language=partner.learning_language,
            interests=", ".join(partner.interests) or "not specified",
            user_name=profile.name or "a new friend",
            hobbies=profile.hobbies or "not specified",
            bio=profile.bio or "not specified",
        ),
        CORRECTIONS_ON if corrections_enabled else CORRECTIONS_OFF,
    ]
    if group:
        parts.append(GROUP_NOTE)
    if topic_context:
        parts.append(TOPIC_NOTE.format(topic=topic_context))
    parts.append(TURN_JSON_INSTRUCTION)
    return "\n".join(parts)


def welcome_instruction(partner: Partner) -> str:
    return WELCOME_PROMPT.format(
        name=partner.name,
        native_language=partner.native_language,
        interests=", ".join(partner.interests) or "not specified",
    ) + MESSAGE_JSON_INSTRUCTION


def nudge_instruction(partner: Partner, profile: Optional[UserProfile], native_language: str) -> str:
    base = partner_instruction(partner, profile, corrections_enabled=False)
    # Nudges carry no correction, so swap the turn schema for the single-message one
    base = base.replace(TURN_JSON_INSTRUCTION, "")
    return base + NUDGE_PROMPT.format(
        native_language=partner.native_language,
        user_native_language=native_language,
    ) + MESSAGE_JSON_INSTRUCTION


def prepare_history(messages: List[Message], max_messages: int, group: bool = False) -> List[Dict[str, Any]]:
    """
    Format history for Gemini: list of {"role": "user"|"model", "parts": [content]}.
    Keeps the last max_messages messages. Group messages carry the sender's name.
    """
    formatted = []
    for msg in (messages or [])[-max_messages:]:
        role = "user" if msg.sender == "user" else "model"
        content = msg.text
        if group and msg.sender == "user" and msg.sender_name:
            content = f"{msg.sender_name}: {content}"
        formatted.append({"role": role, "parts": [content]})
    return formatted


def _strip_fences(response_text: str) -> str:
    return re.sub(r"```(?:json)?\s?|\s?```", "", response_text.strip()).strip()


def parse_json_response(response_text: str) -> Any:
    """
    Parse JSON from a Gemini response. Handles optional markdown code fences.
    Raises ValueError when the text is not valid JSON.
    """
    clean = _strip_fences(response_text)
    try:
        return json.loads(clean)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON response from AI: {clean[:200]}") from e


def parse_turn_response(response_text: str) -> Dict[str, str]:
    """Return {"text", "correction"} from a turn response. Raises ValueError when no text is present."""
    data = parse_json_response(response_text)
    if not isinstance(data, dict):
        raise ValueError("Expected a JSON object from AI.")
    text = (data.get("text") or data.get("reply_text") or "").strip()
    if not text:
        raise ValueError("AI response has no text.")
    return {"text": text, "correction": (data.get("correction") or "").strip()}
