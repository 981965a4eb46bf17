import logging
import re
import time
import uuid
from typing import Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError

from legacy_api import elevenlabs_service, openai_service, storage
from legacy_api.auth import verify_token
from legacy_api.database import SessionLocal
from legacy_api.models import GuestbookEntry, Memorial, Memory, User, VoiceClone
from legacy_api.persona import CATEGORY_QUESTIONS, FALLBACK_REPLY, build_system_prompt, question_for

logger = logging.getLogger(__name__)

router = APIRouter()

GUESTBOOK_TYPES = ("message", "candle", "flower")

# Ids become storage path segments
SAFE_ID = re.compile(r"^[A-Za-z0-9_-]+$")


class ProfileRequest(BaseModel):
    email: Optional[str] = None
    name: Optional[str] = None
    personality_traits: Optional[str] = None


class MemorialRequest(BaseModel):
    title: str
    description: str = ""


class GuestbookRequest(BaseModel):
    author_name: str
    message: str = ""
    type: str = "message"


class ChatRequest(BaseModel):
    message: Optional[str] = None
    memorial_id: Optional[int] = None
    user_id: Optional[str] = None


class VoiceRequest(BaseModel):
    text: Optional[str] = None
    user_id: Optional[str] = None


def make_slug(title: str) -> str:
    base = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return f"{base}-{uuid.uuid4().hex[:8]}"


def _memorial_dict(memorial: Memorial) -> dict:
    return {
        "id": memorial.id,
        "user_id": memorial.user_id,
        "slug": memorial.slug,
        "title": memorial.title,
        "description": memorial.description,
        "is_public": memorial.is_public,
    }


def _entry_dict(entry: GuestbookEntry) -> dict:
    return {
        "id": entry.id,
        "memorial_id": entry.memorial_id,
        "author_name": entry.author_name,
        "message": entry.message,
        "type": entry.type,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


def _profile_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "personality_traits": user.personality_traits,
        "subscription": user.subscription,
        "subscription_status": user.subscription_status,
    }


@router.get("/users/me")
def get_profile(user_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        user = db.get(User, user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return _profile_dict(user)
    finally:
        db.close()


@router.put("/users/me")
def save_profile(request: ProfileRequest, user_id: str = Depends(verify_token)):
    """Create the caller's profile row, or update the fields that were sent."""
    db = SessionLocal()
    try:
        user = db.get(User, user_id)
        if user is None:
            user = User(id=user_id)
            db.add(user)
        for field in ("email", "name", "personality_traits"):
            value = getattr(request, field)
            if value is not None:
                setattr(user, field, value)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            raise HTTPException(status_code=409, detail="Email already in use")
        return _profile_dict(user)
    finally:
        db.close()


@router.post("/memorials")
def create_memorial(request: MemorialRequest, user_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        memorial = Memorial(
            user_id=user_id,
            slug=make_slug(request.title),
            title=request.title,
            description=request.description,
            is_public=True,
        )
        db.add(memorial)
        db.commit()
        return _memorial_dict(memorial)
    finally:
        db.close()


@router.get("/memorials/{slug}")
def get_memorial(slug: str):
    db = SessionLocal()
    try:
        memorial = db.query(Memorial).filter_by(slug=slug, is_public=True).first()
        if memorial is None:
            raise HTTPException(status_code=404, detail="Memorial not found")
        owner = db.get(User, memorial.user_id)
        result = _memorial_dict(memorial)
        result["owner_name"] = owner.name if owner else None
        return result
    finally:
        db.close()


@router.put("/memories")
def save_memories(answers: Dict[str, str], user_id: str = Depends(verify_token)):
    unknown = sorted(set(answers) - set(CATEGORY_QUESTIONS))
    if unknown:
        raise HTTPException(status_code=400, detail=f"Unknown memory categories: {', '.join(unknown)}")

    db = SessionLocal()
    try:
        for category, answer in answers.items():
            memory = db.query(Memory).filter_by(user_id=user_id, category=category).first()
            if memory is None:
                memory = Memory(user_id=user_id, category=category, question=question_for(category))
                db.add(memory)
            memory.answer = answer
        db.commit()
        return {"saved": len(answers)}
    finally:
        db.close()


@router.get("/memories")
def list_memories(user_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        memories = db.query(Memory).filter_by(user_id=user_id).order_by(Memory.created_at.desc()).all()
        return [
            {"category": m.category, "question": m.question, "answer": m.answer}
            for m in memories
        ]
    finally:
        db.close()


@router.post("/memorials/{memorial_id}/guestbook")
def add_guestbook_entry(memorial_id: int, request: GuestbookRequest):
    if request.type not in GUESTBOOK_TYPES:
        raise HTTPException(status_code=400, detail="Invalid guestbook entry type")

    db = SessionLocal()
    try:
        if db.get(Memorial, memorial_id) is None:
            raise HTTPException(status_code=404, detail="Memorial not found")
        entry = GuestbookEntry(
            memorial_id=memorial_id,
            author_name=request.author_name,
            message=request.message,
            type=request.type,
        )
        db.add(entry)
        db.commit()
        return _entry_dict(entry)
    finally:
        db.close()


@router.get("/memorials/{memorial_id}/guestbook")
def list_guestbook_entries(memorial_id: int):
    db = SessionLocal()
    try:
        entries = (
            db.query(GuestbookEntry)
            .filter_by(memorial_id=memorial_id)
            .order_by(GuestbookEntry.created_at.desc(), GuestbookEntry.id.desc())
            .all()
        )
        return [_entry_dict(e) for e in entries]
    finally:
        db.close()


@router.delete("/guestbook/{entry_id}")
def delete_guestbook_entry(entry_id: int, user_id: str = Depends(verify_token)):
    db = SessionLocal()
    try:
        entry = db.get(GuestbookEntry, entry_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Guestbook entry not found")
        memorial = db.get(Memorial, entry.memorial_id)
        if memorial is None or memorial.user_id != user_id:
            raise HTTPException(status_code=403, detail="Unauthorized")
        db.delete(entry)
        db.commit()
        return {"deleted": entry_id}
    finally:
        db.close()


@router.post("/functions/chat")
def chat(request: ChatRequest):
    if not request.message:
        raise HTTPException(status_code=400, detail="Message is required")

    db = SessionLocal()
    try:
        target_user_id = request.user_id
        if request.memorial_id is not None:
            memorial = db.get(Memorial, request.memorial_id)
            if memorial is not None:
                target_user_id = memorial.user_id
        if not target_user_id:
            raise HTTPException(status_code=400, detail="User ID is required")

        user = db.get(User, target_user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        memories = db.query(Memory).filter_by(user_id=target_user_id).all()
        system_prompt = build_system_prompt(user.name, user.personality_traits, memories)
    finally:
        db.close()

    reply = openai_service.chat_completion(system_prompt, request.message)
    return {"response": reply or FALLBACK_REPLY}


@router.post("/functions/voice-generate")
def voice_generate(request: VoiceRequest):
    if not request.text or not request.user_id:
        raise HTTPException(status_code=400, detail="Text and user_id are required")
    if not SAFE_ID.match(request.user_id):
        raise HTTPException(status_code=400, detail="Invalid user_id")

    db = SessionLocal()
    try:
        clone = db.query(VoiceClone).filter_by(user_id=request.user_id, is_active=True).first()
        if clone is None:
            raise HTTPException(status_code=404, detail="No voice clone found for user")
        voice_id = clone.voice_id
    finally:
        db.close()

    audio = elevenlabs_service.generate_speech(request.text, voice_id)
    key = f"{request.user_id}/speech-{int(time.time() * 1000)}.mp3"
    audio_url = storage.upload("audio", key, audio)
    logger.info("Generated speech for user %s at %s", request.user_id, key)
    return {"audio_url": audio_url}
