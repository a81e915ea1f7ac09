"""Generation service: chat turns, welcomes, nudges and learning content from Gemini."""
import logging
import time
from typing import Any, Dict, List, Optional
from google import genai
from google.genai import types
from langcampus.core.config import settings
from langcampus.core.errors import GenerationFailure
from langcampus.core.prompts import (
    LESSON_PROMPT,
    PARTNERS_PROMPT,
    QUIZ_PROMPT,
    nudge_instruction,
    parse_json_response,
    parse_turn_response,
    partner_instruction,
    prepare_history,
    welcome_instruction,
)
from langcampus.schemas.chat import Message, Partner, QuizQuestion, UserProfile
from langcampus.services.cache import get, make_key, set

logger = logging.getLogger(__name__)

# Initialize Gemini client (lazy loaded)
_gemini_client = None

AVATAR_URL = "https://api.dicebear.com/8.x/micah/svg?seed={seed}"


def get_gemini_client():
    """Lazy load Gemini client with request timeout. Client is stateless (HTTP), no lock needed."""
    global _gemini_client
    if _gemini_client is None:
        if not settings.gemini_api_key:
            raise GenerationFailure("Gemini API key not configured. Please set GEMINI_API_KEY in environment.")
        _gemini_client = genai.Client(
            api_key=settings.gemini_api_key,
            http_options=types.HttpOptions(timeout=settings.llm_timeout_seconds * 1000),
        )
        logger.info("Gemini client initialized (timeout=%ss)", settings.llm_timeout_seconds)
    return _gemini_client


def _history_to_contents(history_formatted: List[Dict]) -> List[types.Content]:
    """
    Convert prepare_history() output to Gemini Content list.
    history_formatted: list of {"role": "user"|"model", "parts": [content]}
    """
    contents = []
    for msg in history_formatted:
        parts = msg.get("parts", [])
        text = parts[0] if parts else ""
        contents.append(
            types.Content(
                role=msg.get("role", "user"),
                parts=[types.Part.from_text(text=text)],
            )
        )
    return contents


def _build_safety_settings() -> List[types.SafetySetting]:
    """Block only HIGH probability content; learners write a lot of odd sentences."""
    return [
        types.SafetySetting(category=category, threshold=types.HarmBlockThreshold.BLOCK_ONLY_HIGH)
        for category in (
            types.HarmCategory.HARM_CATEGORY_HARASSMENT,
            types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
            types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
            types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
        )
    ]


def _response_text(response) -> str:
    """Collect all text parts of the first candidate. Raises ValueError when there are none."""
    if not response.candidates or response.candidates[0].content is None:
        raise ValueError("No response content from Gemini")
    candidate = response.candidates[0]
    finish_reason = str(getattr(candidate, "finish_reason", None) or "UNKNOWN")
    if "SAFETY" in finish_reason or "RECITATION" in finish_reason:
        logger.warning(f"Response blocked by filters: {finish_reason}")
    elif "MAX_TOKENS" in finish_reason:
        logger.warning(f"Response truncated due to MAX_TOKENS (max_output_tokens={settings.llm_max_tokens})")
    text_parts = [part.text for part in (candidate.content.parts or []) if getattr(part, "text", None)]
    if not text_parts:
        raise ValueError("No text content in Gemini response parts")
    return " ".join(text_parts)


class GeminiGenerator:
    """
    Blocking Gemini calls; callers run them in a thread with a timeout.

    Every failure (missing key, transport error, blocked or unparseable
    output) is raised as GenerationFailure so it is never mistaken for a reply.
    """

    def __init__(self, model: Optional[str] = None):
        self._model = model or settings.llm_model

    def _generate(self, contents, system_instruction: Optional[str] = None, json_mode: bool = True) -> str:
        config_dict: Dict[str, Any] = {
            "thinking_config": types.ThinkingConfig(thinking_budget=0),
            "max_output_tokens": settings.llm_max_tokens,
            "temperature": settings.llm_temperature,
            "safety_settings": _build_safety_settings(),
        }
        if system_instruction:
            config_dict["system_instruction"] = system_instruction
        if json_mode:
            config_dict["response_mime_type"] = "application/json"
        try:
            client = get_gemini_client()
            logger.info(f"Calling Gemini with model: {self._model}")
            response = client.models.generate_content(
                model=self._model,
                contents=contents,
                config=types.GenerateContentConfig(**config_dict),
            )
            return _response_text(response)
        except GenerationFailure:
            raise
        except Exception as e:
            logger.error(f"Gemini call failed: {e}", exc_info=True)
            raise GenerationFailure(str(e)) from e

    def generate_turn(
        self,
        conversation_context: List[Message],
        partner: Partner,
        corrections_enabled: bool,
        profile: Optional[UserProfile],
        topic_context: Optional[str] = None,
        group: bool = False,
    ) -> Dict[str, str]:
        """Reply to the latest user message. Returns {"text", "correction"}."""
        contents = _history_to_contents(
            prepare_history(conversation_context, settings.history_max_messages, group=group)
        )
        if not contents:
            raise GenerationFailure("Cannot generate a turn without context")
        system_instruction = partner_instruction(
            partner, profile, corrections_enabled, topic_context=topic_context, group=group
        )
        raw = self._generate(contents, system_instruction)
        try:
            return parse_turn_response(raw)
        except ValueError as e:
            raise GenerationFailure(str(e)) from e

    def _single_message(self, contents, partner: Partner, system_instruction: Optional[str] = None) -> Message:
        raw = self._generate(contents, system_instruction)
        try:
            data = parse_json_response(raw)
        except ValueError as e:
            raise GenerationFailure(str(e)) from e
        text = (data.get("text") or "").strip() if isinstance(data, dict) else ""
        if not text:
            raise GenerationFailure("AI message has no text")
        return Message(sender="ai", text=text, sender_name=partner.name, timestamp=time.time())

    def generate_welcome(self, partner: Partner) -> Message:
        """First-contact message for an empty conversation."""
        return self._single_message(welcome_instruction(partner), partner)

    def generate_nudge(
        self,
        conversation_context: List[Message],
        partner: Partner,
        profile: Optional[UserProfile],
        native_language: str,
    ) -> Message:
        """Contextual follow-up when the learner has gone quiet."""
        history = _history_to_contents(prepare_history(conversation_context, settings.history_max_messages))
        history.append(
            types.Content(role="user", parts=[types.Part.from_text(text="(The learner has not replied.)")])
        )
        return self._single_message(history, partner, nudge_instruction(partner, profile, native_language))

    def generate_partners(self, native_language: str, target_language: str, interests: str) -> List[Partner]:
        prompt = PARTNERS_PROMPT.format(
            native_language=native_language,
            target_language=target_language,
            interests=interests or "not specified",
        )
        try:
            data = parse_json_response(self._generate(prompt))
            return [
                Partner(**{**p, "avatar": AVATAR_URL.format(seed=p.get("name", ""))})
                for p in data
            ]
        except (ValueError, TypeError) as e:
            raise GenerationFailure(f"Failed to generate AI partners: {e}") from e

    def generate_lesson(self, topic: str, kind: str, target_language: str, native_language: str) -> str:
        """Markdown lesson. Cached by (topic, kind, languages) when Redis is available."""
        cache_key = make_key("lesson", topic, kind, target_language, native_language)
        cached = get(cache_key)
        if cached:
            logger.info("Cache hit for lesson content")
            return cached
        prompt = LESSON_PROMPT.format(
            topic=topic, kind=kind, target_language=target_language, native_language=native_language
        )
        content = self._generate(prompt, json_mode=False).strip()
        set(cache_key, content, settings.lesson_cache_ttl)
        return content

    def generate_quiz(self, topic: str, kind: str, language: str) -> List[QuizQuestion]:
        prompt = QUIZ_PROMPT.format(topic=topic, kind=kind, language=language)
        try:
            data = parse_json_response(self._generate(prompt))
            return [QuizQuestion(**q) for q in data]
        except (ValueError, TypeError) as e:
            raise GenerationFailure(f"Failed to generate quiz: {e}") from e
