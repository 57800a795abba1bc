from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from vault.database import get_db
from vault.core.deps import get_current_profile
from vault.models import Profile, Deposit, Withdrawal, StrategyPosition, PositionStatus
from vault.schemas.vault import DepositCreateRequest, WithdrawRequest
from vault.services import ledger

router = APIRouter(prefix="/api/vault", tags=["vault"])


def _iso(dt):
    return dt.isoformat() if dt else None


def deposit_to_dict(d: Deposit) -> dict:
    return {
        "id": d.id,
        "amount": str(d.amount),
        "sender_address": d.sender_address,
        "tx_hash": d.tx_hash,
        "status": d.status,
        "created_at": _iso(d.created_at),
        "confirmed_at": _iso(d.confirmed_at),
    }


def withdrawal_to_dict(w: Withdrawal) -> dict:
    return {
        "id": w.id,
        "user_id": w.user_id,
        "amount": str(w.amount),
        "wallet_address": w.wallet_address,
        "status": w.status,
        "tx_hash": w.tx_hash,
        "error": w.error,
        "created_at": _iso(w.created_at),
        "updated_at": _iso(w.updated_at),
        "completed_at": _iso(w.completed_at),
    }


@router.get("")
async def get_vault(profile: Profile = Depends(get_current_profile), db: AsyncSession = Depends(get_db)):
    await db.refresh(profile)
    positions = list(await db.scalars(
        select(StrategyPosition).where(
            StrategyPosition.user_id == profile.id,
            StrategyPosition.status == PositionStatus.active,
        ).order_by(StrategyPosition.created_at.desc())
    ))
    pending = await ledger.pending_withdrawal_total(db, profile.id)
    return {
        "id": profile.id,
        "balance": str(profile.balance),
        "locked_balance": str(profile.locked_balance),
        "pending_withdrawal": str(pending),
        "active_positions": [{
            "id": p.id,
            "market_name": p.market_name,
            "side": p.side,
            "entry_price": str(p.entry_price),
            "current_price": str(p.current_price) if p.current_price is not None else None,
            "amount": str(p.amount),
            "created_at": _iso(p.created_at),
        } for p in positions],
    }


@router.post("/deposits", status_code=201)
async def create_deposit(
    body: DepositCreateRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Declare an incoming USDC transfer so the webhook can match it."""
    deposit = await ledger.register_deposit(db, profile.id, body.amount, body.sender_address)
    return deposit_to_dict(deposit)


@router.post("/withdrawals", status_code=201)
async def create_withdrawal(
    body: WithdrawRequest,
    profile: Profile = Depends(get_current_profile),
    db: AsyncSession = Depends(get_db),
):
    """Debit the balance and queue a payout for the next processing run."""
    withdrawal = await ledger.request_withdrawal(db, profile.id, body.amount, body.wallet_address)
    return withdrawal_to_dict(withdrawal)


@router.get("/history")
async def history(profile: Profile = Depends(get_current_profile), db: AsyncSession = Depends(get_db)):
    deposits = list(await db.scalars(
        select(Deposit).where(Deposit.user_id == profile.id)
        .order_by(Deposit.created_at.desc()).limit(50)
    ))
    withdrawals = list(await db.scalars(
        select(Withdrawal).where(Withdrawal.user_id == profile.id)
        .order_by(Withdrawal.created_at.desc()).limit(50)
    ))
    return {
        "deposits": [deposit_to_dict(d) for d in deposits],
        "withdrawals": [withdrawal_to_dict(w) for w in withdrawals],
    }
