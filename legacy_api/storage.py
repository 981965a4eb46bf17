import os
from pathlib import Path
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def media_root() -> Path:
    return Path(os.getenv("MEDIA_DIR", str(BASE_DIR / "media")))


def public_url(bucket: str, key: str) -> str:
    base = os.getenv("MEDIA_BASE_URL", "http://localhost:8000/media").rstrip("/")
    return f"{base}/{bucket}/{key}"


def object_path(bucket: str, key: str) -> Path:
    """Filesystem path for ``bucket/key``. Raises ValueError if it escapes the media root."""
    root = media_root().resolve()
    file_path = (root / bucket / key).resolve()
    if root not in file_path.parents:
        raise ValueError(f"Invalid object key: {bucket}/{key}")
    return file_path


def upload(bucket: str, key: str, content: bytes) -> str:
    """Store ``content`` under ``bucket/key`` and return its public URL."""
    file_path = object_path(bucket, key)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    with open(file_path, "wb") as buffer:
        buffer.write(content)
    return public_url(bucket, key)
