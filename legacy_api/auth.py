import os
from pathlib import Path
from dotenv import load_dotenv
from fastapi import Header, HTTPException
from jose import JWTError, jwt

BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")


def verify_token(authorization: str = Header(...)) -> str:
    """Validate the bearer token and return the caller's user id (``sub`` claim)."""
    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise ValueError("unsupported auth scheme")
        claims = jwt.decode(
            token,
            os.getenv("JWT_SECRET"),
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
    except (ValueError, JWTError):
        raise HTTPException(status_code=401, detail="Invalid or missing token")

    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid or missing token")
    return user_id
