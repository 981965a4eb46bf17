import logging
import os
from pathlib import Path
from dotenv import load_dotenv
import requests

from legacy_api.errors import ConfigurationError, UpstreamError

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

logger = logging.getLogger(__name__)

API_BASE = "https://api.elevenlabs.io/v1"

VOICE_SETTINGS = {
    "stability": 0.5,
    "similarity_boost": 0.5,
}


def generate_speech(text: str, voice_id: str) -> bytes:
    """Synthesise ``text`` with a cloned voice; returns MP3 bytes."""
    api_key = os.getenv("ELEVENLABS_API_KEY", "")
    if not api_key:
        raise ConfigurationError("ElevenLabs API key not configured")

    try:
        response = requests.post(
            f"{API_BASE}/text-to-speech/{voice_id}",
            headers={
                "Accept": "audio/mpeg",
                "Content-Type": "application/json",
                "xi-api-key": api_key,
            },
            json={
                "text": text,
                "model_id": os.getenv("ELEVENLABS_MODEL", "eleven_monolingual_v1"),
                "voice_settings": VOICE_SETTINGS,
            },
            timeout=60,
        )
    except requests.RequestException as exc:
        logger.error("ElevenLabs request failed: %s", exc)
        raise UpstreamError("elevenlabs", "Failed to generate speech")

    if not response.ok:
        logger.error("ElevenLabs speech generation error: %s %s", response.status_code, response.text)
        raise UpstreamError("elevenlabs", "Failed to generate speech")
    return response.content
