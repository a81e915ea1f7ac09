"""WAV wrapping and voice selection for speech playback."""
import struct

from langcampus.utils.audio import parse_audio_mime_type, pcm_to_wav
from langcampus.utils.language import DEFAULT_VOICE, language_name, voice_for


def test_parse_audio_mime_type():
    assert parse_audio_mime_type("audio/L16;codec=pcm;rate=24000") == {"bits_per_sample": 16, "rate": 24000}
    assert parse_audio_mime_type("audio/L24;rate=16000") == {"bits_per_sample": 24, "rate": 16000}
    assert parse_audio_mime_type("audio/pcm") == {"bits_per_sample": 16, "rate": 24000}


def test_pcm_to_wav_header():
    pcm = b"\x00\x01" * 100
    wav = pcm_to_wav(pcm, "audio/L16;rate=24000")

    assert wav[:4] == b"RIFF"
    assert wav[8:12] == b"WAVE"
    assert len(wav) == 44 + len(pcm)
    chunk_size, = struct.unpack("<I", wav[4:8])
    sample_rate, = struct.unpack("<I", wav[24:28])
    assert chunk_size == 36 + len(pcm)
    assert sample_rate == 24000


def test_voice_for_falls_back_to_base_language_then_default():
    assert voice_for("es-ES") == "Puck"
    assert voice_for("es-MX") == "Puck"
    assert voice_for("xx-YY") == DEFAULT_VOICE


def test_language_name():
    assert language_name("es-ES") == "Spanish"
    assert language_name("zz") is None
