import base64
import hashlib
from io import BytesIO

from openai import OpenAI

from callaudit.config import settings


def hash_audio(data: bytes) -> str:
    """SHA-256 hex digest of the raw audio, used to detect re-submitted calls."""
    return hashlib.sha256(data).hexdigest()


def encode_audio(data: bytes) -> str:
    """Base64 copy of the audio kept on the audit entry for playback."""
    return base64.b64encode(data).decode("ascii")


def decode_audio(data: str) -> bytes:
    return base64.b64decode(data)


def transcribe_audio(client: OpenAI, data: bytes, file_name: str = "") -> str:
    """
    Transcribe call audio to text using OpenAI's audio API.
    Returns the transcript as plain text.
    """
    audio_file = BytesIO(data)
    audio_file.name = file_name or "audio.wav"

    response = client.audio.transcriptions.create(
        model=settings.openai_transcription_model,
        file=audio_file,
        response_format="text",
    )

    # response is just the transcript text in this mode
    return response
