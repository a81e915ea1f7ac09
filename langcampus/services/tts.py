"""Text-to-Speech with Gemini speech generation, returned as WAV."""
import base64
import logging
from google.genai import types
from langcampus.core.config import settings
from langcampus.core.errors import GenerationFailure
from langcampus.services.cache import get, make_key, set
from langcampus.services.llm import get_gemini_client
from langcampus.utils.audio import pcm_to_wav
from langcampus.utils.language import language_name, voice_for

logger = logging.getLogger(__name__)


def synthesize_speech(text: str, language_code: str = "en-US") -> bytes:
    """
    Speak ``text`` with the voice configured for ``language_code``.

    Returns WAV bytes (24kHz mono PCM16). Cached as base64 when Redis is
    available. Raises GenerationFailure when no audio comes back.
    """
    voice_name = voice_for(language_code)
    cache_key = make_key("tts", language_code, voice_name, text)
    cached = get(cache_key)
    if cached:
        logger.info("Cache hit for TTS")
        return base64.b64decode(cached)

    try:
        client = get_gemini_client()
        language = language_name(language_code) or language_code
        logger.info(f"Synthesizing speech (voice: {voice_name}, language: {language}, chars: {len(text)})")
        resp = client.models.generate_content(
            model=settings.tts_model,
            contents=text,
            config=types.GenerateContentConfig(
                response_modalities=["AUDIO"],
                speech_config=types.SpeechConfig(
                    voice_config=types.VoiceConfig(
                        prebuilt_voice_config=types.PrebuiltVoiceConfig(voice_name=voice_name)
                    )
                ),
            ),
        )
        inline = resp.candidates[0].content.parts[0].inline_data
    except GenerationFailure:
        raise
    except Exception as e:
        logger.error(f"Speech generation failed: {e}", exc_info=True)
        raise GenerationFailure("Something went wrong generating audio. Please try again.") from e

    if inline is None or not inline.data:
        raise GenerationFailure("No audio returned from speech generation.")
    wav = pcm_to_wav(inline.data, inline.mime_type or "audio/L16;rate=24000")
    set(cache_key, base64.b64encode(wav).decode("ascii"), settings.tts_cache_ttl)
    return wav
