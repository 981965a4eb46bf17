import json
import logging
import os
from pathlib import Path
from dotenv import load_dotenv
from fastapi import FastAPI, Request, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse

from legacy_api import razorpay_service, storage, webhooks
from legacy_api.database import Base, engine, SessionLocal
from legacy_api.errors import PaymentError, UpstreamError, user_message
from legacy_api.memorials import router as memorials_router
from legacy_api.routes import router

# Force-load .env
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI(title="Legacy Memorial API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",")],
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-razorpay-signature"],
)

app.include_router(router)
app.include_router(memorials_router)

Base.metadata.create_all(bind=engine)


@app.exception_handler(PaymentError)
async def payment_error_handler(request: Request, exc: PaymentError):
    logger.error("%s %s failed: [%s] %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "code": exc.code, "message": user_message(exc)},
    )


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error("%s call from %s failed: %s", exc.provider, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message, "provider": exc.provider})


@app.get("/media/{bucket}/{key:path}")
def get_media(bucket: str, key: str):
    try:
        file_path = storage.object_path(bucket, key)
    except ValueError:
        raise HTTPException(status_code=404, detail="Not found")
    if not file_path.is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(file_path)


@app.post("/webhook")
@app.post("/functions/razorpay-webhook")
async def razorpay_webhook(
    request: Request,
    x_razorpay_signature: str = Header(None),
    x_razorpay_event_id: str = Header(None),
):
    if not x_razorpay_signature:
        raise HTTPException(status_code=400, detail="Missing razorpay signature header")

    payload = await request.body()
    secret = razorpay_service.get_webhook_secret()
    if not razorpay_service.verify_webhook_signature(payload, x_razorpay_signature, secret):
        logger.error("Invalid webhook signature")
        return JSONResponse(status_code=401, content={"error": "Invalid signature"})

    try:
        event = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise HTTPException(status_code=400, detail="Invalid payload")
    logger.info("Webhook event received: %s", event.get("event") if isinstance(event, dict) else None)

    db = SessionLocal()
    try:
        return webhooks.process_event(db, payload, event, x_razorpay_event_id)
    except Exception as exc:
        logger.exception("Webhook processing error")
        return JSONResponse(
            status_code=400,
            content={"error": str(exc) or "Webhook processing failed", "received": False},
        )
    finally:
        db.close()
