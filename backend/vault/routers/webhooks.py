import json
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from vault.config import settings
from vault.database import get_db
from vault.errors import AuthError
from vault.services.deposit_reconciler import verify_signature, reconcile_activities

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/alchemy")
async def alchemy_address_activity(request: Request, db: AsyncSession = Depends(get_db)):
    """Alchemy Address Activity notification: credit matched USDC deposits."""
    raw_body = await request.body()
    try:
        verify_signature(raw_body, request.headers.get("x-alchemy-signature"))
    except AuthError as e:
        logger.info("[webhook] Signature verification failed")
        return JSONResponse({"error": e.message}, status_code=401)

    try:
        payload = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError):
        return JSONResponse({"error": "Invalid JSON"}, status_code=400)

    platform_wallet = settings.PLATFORM_WALLET_ADDRESS.lower()
    if not platform_wallet:
        logger.error("[webhook] PLATFORM_WALLET_ADDRESS not set")
        return JSONResponse({"error": "Server config error"}, status_code=500)

    event = payload.get("event") if isinstance(payload, dict) else None
    activities = event.get("activity") if isinstance(event, dict) else None
    if not isinstance(activities, list):
        return {"ok": True, "confirmed": 0, "message": "No activities"}

    try:
        confirmed = await reconcile_activities(db, activities, platform_wallet)
    except Exception as e:
        logger.exception("[webhook] Unhandled error")
        return JSONResponse({"error": str(e) or "Unknown error"}, status_code=500)
    return {"ok": True, "confirmed": confirmed}
