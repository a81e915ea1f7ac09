"""WAV container helpers for raw PCM returned by speech generation."""
import logging
import struct

logger = logging.getLogger(__name__)


def parse_audio_mime_type(mime_type: str) -> dict[str, int]:
    """
    Parses bits per sample and rate from an audio MIME type string.

    Args:
        mime_type: The audio MIME type string (e.g., "audio/L16;rate=24000" or "audio/L16;codec=pcm;rate=24000").

    Returns:
        A dictionary with "bits_per_sample" and "rate" keys.
    """
    bits_per_sample = 16
    rate = 24000

    # Check main type for L16, L24, etc.
    if mime_type.startswith("audio/L"):
        try:
            main_part = mime_type.split(";")[0]
            bits_per_sample = int(main_part.split("L", 1)[1])
        except (ValueError, IndexError):
            pass  # Keep default

    for param in mime_type.split(";"):
        param = param.strip()
        if param.lower().startswith("rate="):
            try:
                rate = int(param.split("=", 1)[1])
            except (ValueError, IndexError):
                pass  # Keep default

    logger.debug(f"Parsed MIME type '{mime_type}': bits_per_sample={bits_per_sample}, rate={rate}")
    return {"bits_per_sample": bits_per_sample, "rate": rate}


def pcm_to_wav(audio_data: bytes, mime_type: str = "audio/L16;rate=24000", num_channels: int = 1) -> bytes:
    """Prepend a PCM WAV header to raw audio bytes."""
    parameters = parse_audio_mime_type(mime_type)
    bits_per_sample = parameters["bits_per_sample"]
    sample_rate = parameters["rate"]
    data_size = len(audio_data)
    block_align = num_channels * (bits_per_sample // 8)
    byte_rate = sample_rate * block_align

    header = struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF",
        36 + data_size,   # ChunkSize (total file size - 8 bytes)
        b"WAVE",
        b"fmt ",
        16,               # Subchunk1Size (16 for PCM)
        1,                # AudioFormat (1 for PCM)
        num_channels,
        sample_rate,
        byte_rate,
        block_align,
        bits_per_sample,
        b"data",
        data_size,
    )
    return header + audio_data
