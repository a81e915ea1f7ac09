"""Supported languages and the speech voice used for each."""
from typing import Optional

LANGUAGES = [
    ("en-US", "English (US)"),
    ("en-GB", "English (UK)"),
    ("fr-FR", "French"),
    ("de-DE", "German"),
    ("it-IT", "Italian"),
    ("pt-BR", "Portuguese (Brazil)"),
    ("ja-JP", "Japanese"),
    ("ko-KR", "Korean"),
    ("cmn-CN", "Mandarin Chinese"),
    ("ru-RU", "Russian"),
    ("es-ES", "Spanish"),
    ("ar-XA", "Arabic"),
    ("hi-IN", "Hindi"),
]

# Prebuilt Gemini voice per language code
VOICE_BY_LANGUAGE = {
    "en-US": "Kore",
    "es-ES": "Puck",
    "fr-FR": "Leda",
    "de-DE": "Charon",
    "ja-JP": "Aoede",
    "ko-KR": "Orus",
    "it-IT": "Fenrir",
    "pt-BR": "Umbriel",
    "ru-RU": "Iapetus",
    "ar-XA": "Algieba",
    "cmn-CN": "Achernar",
    "hi-IN": "Alnilam",
}

DEFAULT_VOICE = "Kore"


def language_name(code: str) -> Optional[str]:
    """Display name for a language code, or None if unsupported."""
    for known, name in LANGUAGES:
        if known.lower() == (code or "").lower():
            return name
    return None


def voice_for(code: str) -> str:
    """Voice for a language code. Falls back on the base language (en-GB -> en-US), then the default."""
    if code in VOICE_BY_LANGUAGE:
        return VOICE_BY_LANGUAGE[code]
    base = (code or "").split("-")[0].lower()
    for known, voice in VOICE_BY_LANGUAGE.items():
        if known.split("-")[0].lower() == base:
            return voice
    return DEFAULT_VOICE
