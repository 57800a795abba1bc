from datetime import timedelta
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from vault.config import settings
from vault.database import get_db
from vault.core.deps import require_admin
from vault.errors import ConcurrencyConflict
from vault.models import Profile, Withdrawal, WithdrawalStatus
from vault.models._common import utcnow
from vault.routers.vault import deposit_to_dict, withdrawal_to_dict
from vault.schemas.vault import ResolveWithdrawalRequest, CancelWithdrawalRequest
from vault.services import ledger

router = APIRouter(prefix="/api/admin", tags=["admin"])


# ── Withdrawal management ──────────────────────────────────────────

@router.get("/withdrawals")
async def list_withdrawals(
    status: str = "all",
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Withdrawal)
    if status != "all":
        query = query.where(Withdrawal.status == status)
    withdrawals = list(await db.scalars(query.order_by(desc(Withdrawal.created_at)).limit(200)))
    return [withdrawal_to_dict(w) for w in withdrawals]


@router.get("/withdrawals/stuck")
async def stuck_withdrawals(
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Withdrawals left in processing: the transfer may or may not have gone out.

    Check each tx_hash (or the hot wallet's history) on-chain before resolving.
    """
    rows = await ledger.list_stuck_withdrawals(db, settings.STUCK_PROCESSING_MINUTES)
    return [withdrawal_to_dict(w) for w in rows]


@router.put("/withdrawals/{withdrawal_id}/resolve")
async def resolve_withdrawal(
    withdrawal_id: str,
    body: ResolveWithdrawalRequest,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    if not await db.get(Withdrawal, withdrawal_id):
        raise HTTPException(404, "Withdrawal not found")
    if not await ledger.resolve_stuck_withdrawal(db, withdrawal_id, body.outcome, body.tx_hash):
        raise ConcurrencyConflict(withdrawal_id, WithdrawalStatus.processing)
    return {"message": f"withdrawal marked {body.outcome}"}


@router.put("/withdrawals/{withdrawal_id}/cancel")
async def cancel_withdrawal(
    withdrawal_id: str,
    body: CancelWithdrawalRequest,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Fail a pending withdrawal and refund its amount to the user."""
    if not await db.get(Withdrawal, withdrawal_id):
        raise HTTPException(404, "Withdrawal not found")
    if not await ledger.cancel_withdrawal(db, withdrawal_id, body.reason):
        raise ConcurrencyConflict(withdrawal_id, WithdrawalStatus.pending)
    return {"message": "withdrawal cancelled and refunded"}


# ── Deposit reconciliation ─────────────────────────────────────────

@router.get("/deposits/unmatched")
async def unmatched_deposits(
    older_than_hours: int = 24,
    admin: Profile = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Pending deposit claims that no on-chain transfer has matched yet."""
    cutoff = utcnow() - timedelta(hours=older_than_hours)
    rows = await ledger.list_unmatched_deposits(db, cutoff)
    return [deposit_to_dict(d) for d in rows]
