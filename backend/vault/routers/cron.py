import logging
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from vault.config import settings
from vault.core.deps import require_cron_secret, get_chain_client
from vault.database import get_db
from vault.errors import ChainError
from vault.services.chain_client import ChainClient
from vault.services.withdrawal_processor import process_pending_withdrawals

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


@router.get("/process-withdrawals", dependencies=[Depends(require_cron_secret)])
async def process_withdrawals(
    db: AsyncSession = Depends(get_db),
    chain: ChainClient = Depends(get_chain_client),
):
    """Pay out pending withdrawals from the hot wallet. Called by cron or an operator."""
    try:
        report = await process_pending_withdrawals(
            db, chain, budget_seconds=settings.WITHDRAWAL_RUN_BUDGET_SECONDS,
        )
    except ChainError as e:
        logger.error("[withdraw] Failed to check hot wallet balance: %s", e.message)
        return JSONResponse({"error": "Cannot reach hot wallet"}, status_code=500)
    except Exception as e:
        logger.exception("[withdraw] Run aborted")
        return JSONResponse({"error": str(e) or "Unknown error"}, status_code=500)

    if report.total == 0:
        return {"ok": True, "processed": 0, "total": 0, "results": [], "message": "No pending withdrawals"}
    return report.to_dict()
