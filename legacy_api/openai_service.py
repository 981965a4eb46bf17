import logging
import os
import time
from pathlib import Path
from dotenv import load_dotenv
import requests

from legacy_api.errors import ConfigurationError, UpstreamError

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

logger = logging.getLogger(__name__)

API_BASE = "https://api.openai.com/v1"


def chat_completion(system_prompt: str, message: str, max_tokens: int = 200, temperature: float = 0.7) -> str:
    """Single-turn completion. Returns the reply text, possibly empty."""
    api_key = os.getenv("OPENAI_API_KEY", "")
    if not api_key:
        raise ConfigurationError("OPENAI_API_KEY not configured")
    model = os.getenv("OPENAI_MODEL", "gpt-4")

    start_time = time.time()
    try:
        response = requests.post(
            f"{API_BASE}/chat/completions",
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {api_key}",
            },
            json={
                "model": model,
                "messages": [
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": message},
                ],
                "max_tokens": max_tokens,
                "temperature": temperature,
            },
            timeout=30,
        )
    except requests.RequestException as exc:
        logger.error("OpenAI request failed: %s", exc)
        raise UpstreamError("openai", "Chat service is unavailable right now.")

    latency_ms = int((time.time() - start_time) * 1000)
    if response.status_code != 200:
        logger.error("OpenAI error: status=%s error=%s", response.status_code, response.text)
        raise UpstreamError("openai", f"OpenAI API error: {response.status_code}")

    data = response.json()
    choices = data.get("choices") or [{}]
    content = (choices[0].get("message") or {}).get("content") or ""
    logger.info("OpenAI success: model=%s latency=%sms tokens=%s",
                model, latency_ms, (data.get("usage") or {}).get("total_tokens", 0))
    return content
