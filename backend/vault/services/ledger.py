"""Ledger store operations.

Every status change is a single conditional ``UPDATE ... WHERE status = ?``
whose affected-row count is the result; zero rows means another actor got
there first. Balance mutations only happen here, inside the same transaction
as the status change they belong to.
"""
import logging
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_DOWN
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from vault.errors import InsufficientBalanceError, NotFoundError, ValidationError
from vault.models import Profile, ProfileRole, Deposit, DepositStatus, Withdrawal, WithdrawalStatus
from vault.models._common import utcnow

logger = logging.getLogger(__name__)

MONEY_QUANTUM = Decimal("0.000001")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(MONEY_QUANTUM, rounding=ROUND_DOWN)


async def _transition(db: AsyncSession, model, record_id: str, expected_status: str, **values) -> int:
    result = await db.execute(
        update(model)
        .where(model.id == record_id, model.status == expected_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


# ── Profiles ───────────────────────────────────────────────────────

async def get_or_create_profile(db: AsyncSession, profile_id: str, role: str = ProfileRole.user) -> Profile:
    profile = await db.get(Profile, profile_id)
    if profile:
        return profile
    profile = Profile(id=profile_id, balance=Decimal("0"), locked_balance=Decimal("0"), role=role)
    db.add(profile)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent first request inserted the same profile
        await db.rollback()
        logger.info("[profile] %s already provisioned concurrently", profile_id)
        return await db.get(Profile, profile_id, populate_existing=True)
    await db.refresh(profile)
    return profile


# ── Deposits ───────────────────────────────────────────────────────

async def register_deposit(db: AsyncSession, user_id: str, amount, sender_address: str) -> Deposit:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Deposit amount must be positive")
    deposit = Deposit(
        user_id=user_id,
        amount=amount,
        sender_address=sender_address.strip().lower(),
        status=DepositStatus.pending,
    )
    db.add(deposit)
    await db.commit()
    await db.refresh(deposit)
    return deposit


async def find_matching_deposit(
    db: AsyncSession, sender_address: str, amount: Decimal, tolerance: Decimal
) -> Optional[Deposit]:
    """Oldest pending claim from this sender within ``tolerance`` of ``amount``."""
    return await db.scalar(
        select(Deposit)
        .where(
            Deposit.status == DepositStatus.pending,
            Deposit.sender_address == sender_address.lower(),
            Deposit.amount >= amount - tolerance,
            Deposit.amount <= amount + tolerance,
        )
        .order_by(Deposit.created_at.asc())
        .limit(1)
        .execution_options(populate_existing=True)
    )


async def find_deposit_by_tx_hash(db: AsyncSession, tx_hash: str) -> Optional[Deposit]:
    return await db.scalar(
        select(Deposit).where(Deposit.tx_hash == tx_hash).execution_options(populate_existing=True)
    )


async def attach_deposit_tx_hash(db: AsyncSession, deposit_id: str, tx_hash: str) -> bool:
    """Record the observed hash. Safe to repeat; never overwrites a different hash."""
    result = await db.execute(
        update(Deposit)
        .where(Deposit.id == deposit_id, Deposit.tx_hash.is_(None))
        .values(tx_hash=tx_hash)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def confirm_deposit(db: AsyncSession, deposit_id: str) -> bool:
    """Atomically mark a pending deposit confirmed and credit its owner.

    Returns False (and changes nothing) if the deposit is no longer pending,
    so replays never double-credit.
    """
    try:
        changed = await _transition(
            db, Deposit, deposit_id, DepositStatus.pending,
            status=DepositStatus.confirmed,
            confirmed_at=utcnow(),
        )
        if changed != 1:
            await db.rollback()
            return False

        user_id, amount = (await db.execute(
            select(Deposit.user_id, Deposit.amount).where(Deposit.id == deposit_id)
        )).one()
        credited = await db.execute(
            update(Profile)
            .where(Profile.id == user_id)
            .values(balance=Profile.balance + amount)
            .execution_options(synchronize_session=False)
        )
        if credited.rowcount != 1:
            raise NotFoundError(f"Profile {user_id} not found")
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return True


async def list_unmatched_deposits(db: AsyncSession, older_than: datetime) -> list[Deposit]:
    return list(await db.scalars(
        select(Deposit)
        .where(Deposit.status == DepositStatus.pending, Deposit.created_at < older_than)
        .order_by(Deposit.created_at.asc())
        .execution_options(populate_existing=True)
    ))


# ── Withdrawals ────────────────────────────────────────────────────

async def request_withdrawal(db: AsyncSession, user_id: str, amount, wallet_address: str) -> Withdrawal:
    """Debit the balance and queue a pending withdrawal in one transaction."""
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Withdrawal amount must be positive")
    try:
        debited = await db.execute(
            update(Profile)
            .where(Profile.id == user_id, Profile.balance >= amount)
            .values(balance=Profile.balance - amount)
            .execution_options(synchronize_session=False)
        )
        if debited.rowcount != 1:
            available = await db.scalar(select(Profile.balance).where(Profile.id == user_id))
            if available is None:
                raise NotFoundError("Profile not found")
            raise InsufficientBalanceError(amount, available)

        withdrawal = Withdrawal(
            user_id=user_id,
            amount=amount,
            wallet_address=wallet_address.strip(),
            status=WithdrawalStatus.pending,
        )
        db.add(withdrawal)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    await db.refresh(withdrawal)
    return withdrawal


async def list_pending_withdrawals(db: AsyncSession) -> list[Withdrawal]:
    return list(await db.scalars(
        select(Withdrawal)
        .where(Withdrawal.status == WithdrawalStatus.pending)
        .order_by(Withdrawal.created_at.asc())
        .execution_options(populate_existing=True)
    ))


async def claim_withdrawal(db: AsyncSession, withdrawal_id: str) -> bool:
    """pending → processing. False if another run already claimed it."""
    changed = await _transition(
        db, Withdrawal, withdrawal_id, WithdrawalStatus.pending,
        status=WithdrawalStatus.processing,
        updated_at=utcnow(),
    )
    await db.commit()
    return changed == 1


async def complete_withdrawal(db: AsyncSession, withdrawal_id: str, tx_hash: str) -> bool:
    now = utcnow()
    changed = await _transition(
        db, Withdrawal, withdrawal_id, WithdrawalStatus.processing,
        status=WithdrawalStatus.completed,
        tx_hash=tx_hash,
        error=None,
        completed_at=now,
        updated_at=now,
    )
    await db.commit()
    return changed == 1


async def release_withdrawal(db: AsyncSession, withdrawal_id: str, error: str) -> bool:
    """processing → pending after a transfer that definitely did not happen."""
    changed = await _transition(
        db, Withdrawal, withdrawal_id, WithdrawalStatus.processing,
        status=WithdrawalStatus.pending,
        error=error[:500],
        updated_at=utcnow(),
    )
    await db.commit()
    return changed == 1


async def flag_unconfirmed_withdrawal(
    db: AsyncSession, withdrawal_id: str, tx_hash: Optional[str], error: str
) -> bool:
    """Leave the row in processing, keeping whatever is known for the operator."""
    values = {"error": error[:500], "updated_at": utcnow()}
    if tx_hash:
        values["tx_hash"] = tx_hash
    result = await db.execute(
        update(Withdrawal)
        .where(Withdrawal.id == withdrawal_id, Withdrawal.status == WithdrawalStatus.processing)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def list_stuck_withdrawals(db: AsyncSession, older_than_minutes: int) -> list[Withdrawal]:
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)
    return list(await db.scalars(
        select(Withdrawal)
        .where(Withdrawal.status == WithdrawalStatus.processing, Withdrawal.updated_at < cutoff)
        .order_by(Withdrawal.updated_at.asc())
        .execution_options(populate_existing=True)
    ))


async def resolve_stuck_withdrawal(
    db: AsyncSession, withdrawal_id: str, outcome: str, tx_hash: Optional[str] = None
) -> bool:
    """Operator decision for a processing row after checking the chain by hand."""
    if outcome == WithdrawalStatus.completed:
        if not tx_hash:
            raise ValidationError("tx_hash is required to mark a withdrawal completed")
        return await complete_withdrawal(db, withdrawal_id, tx_hash)
    if outcome == WithdrawalStatus.pending:
        changed = await _transition(
            db, Withdrawal, withdrawal_id, WithdrawalStatus.processing,
            status=WithdrawalStatus.pending,
            tx_hash=None,
            error="Returned to queue by operator",
            updated_at=utcnow(),
        )
        await db.commit()
        return changed == 1
    raise ValidationError(f"Unsupported outcome: {outcome}")


async def cancel_withdrawal(db: AsyncSession, withdrawal_id: str, reason: str = "") -> bool:
    """pending → failed and refund the owner, atomically."""
    try:
        changed = await _transition(
            db, Withdrawal, withdrawal_id, WithdrawalStatus.pending,
            status=WithdrawalStatus.failed,
            error=(reason or "Cancelled by operator")[:500],
            updated_at=utcnow(),
        )
        if changed != 1:
            await db.rollback()
            return False
        user_id, amount = (await db.execute(
            select(Withdrawal.user_id, Withdrawal.amount).where(Withdrawal.id == withdrawal_id)
        )).one()
        await db.execute(
            update(Profile)
            .where(Profile.id == user_id)
            .values(balance=Profile.balance + amount)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    logger.info("[withdraw] Cancelled %s and refunded %s to %s", withdrawal_id, amount, user_id)
    return True


async def pending_withdrawal_total(db: AsyncSession, user_id: str) -> Decimal:
    total = await db.scalar(
        select(func.sum(Withdrawal.amount)).where(
            Withdrawal.user_id == user_id,
            Withdrawal.status.in_([WithdrawalStatus.pending, WithdrawalStatus.processing]),
        )
    )
    return Decimal(str(total)) if total is not None else Decimal("0")
