"""Hot-wallet payout run.

One run: read pending withdrawals oldest-first, read the hot-wallet balance
once, then for each request claim it (pending → processing), send USDC and
record the outcome. Transfers are sent one at a time.

A request whose transfer may have left the wallet but whose outcome could not
be recorded stays in ``processing``. Those rows are never picked up again
automatically; an operator resolves them through the admin API.
"""
import logging
from time import monotonic
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from vault.errors import ChainError, TransferUnconfirmedError
from vault.services import ledger
from vault.services.chain_client import ChainClient

logger = logging.getLogger(__name__)


class Outcome:
    completed = "completed"
    skipped = "skipped"
    failed = "failed"
    error = "error"
    unconfirmed = "unconfirmed"


LIQUIDITY_SHORTFALL = "Insufficient hot wallet balance"
ALREADY_CLAIMED = "Already claimed by another run"
BUDGET_EXHAUSTED = "Run time budget exhausted"


@dataclass
class WithdrawalResult:
    id: str
    status: str
    tx_hash: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        d = {"id": self.id, "status": self.status}
        if self.tx_hash:
            d["txHash"] = self.tx_hash
        if self.error:
            d["error"] = self.error
        return d


@dataclass
class WithdrawalRunReport:
    total: int = 0
    results: list = field(default_factory=list)

    def count(self, status: str) -> int:
        return sum(1 for r in self.results if r.status == status)

    @property
    def processed(self) -> int:
        return self.count(Outcome.completed)

    def to_dict(self) -> dict:
        return {
            "ok": True,
            "processed": self.processed,
            "total": self.total,
            "counts": {
                s: self.count(s)
                for s in (Outcome.completed, Outcome.skipped, Outcome.failed, Outcome.error, Outcome.unconfirmed)
            },
            "results": [r.to_dict() for r in self.results],
        }


async def process_pending_withdrawals(
    db: AsyncSession,
    chain: ChainClient,
    budget_seconds: Optional[float] = None,
) -> WithdrawalRunReport:
    """Run one payout pass.

    Raises ChainError if the hot-wallet balance cannot be read; in that case
    no withdrawal has been touched.
    """
    pending = await ledger.list_pending_withdrawals(db)
    # Plain tuples so later conditional updates can't be shadowed by stale ORM state
    queue = [(w.id, Decimal(str(w.amount)), w.wallet_address) for w in pending]
    report = WithdrawalRunReport(total=len(queue))
    if not queue:
        return report

    remaining = await chain.balance_of(chain.hot_wallet_address)
    logger.info("[withdraw] %d pending, hot wallet balance %s", len(queue), remaining)

    deadline = monotonic() + budget_seconds if budget_seconds else None

    for withdrawal_id, amount, destination in queue:
        if deadline is not None and monotonic() >= deadline:
            report.results.append(WithdrawalResult(withdrawal_id, Outcome.skipped, error=BUDGET_EXHAUSTED))
            continue

        if remaining < amount:
            logger.warning("[withdraw] Insufficient hot wallet balance (%s) for withdrawal %s (%s)",
                           remaining, withdrawal_id, amount)
            report.results.append(WithdrawalResult(withdrawal_id, Outcome.skipped, error=LIQUIDITY_SHORTFALL))
            continue

        try:
            claimed = await ledger.claim_withdrawal(db, withdrawal_id)
        except Exception as e:
            logger.exception("[withdraw] Could not claim %s", withdrawal_id)
            await db.rollback()
            report.results.append(WithdrawalResult(withdrawal_id, Outcome.error, error=str(e)))
            continue
        if not claimed:
            logger.info("[withdraw] %s already claimed by another run", withdrawal_id)
            report.results.append(WithdrawalResult(withdrawal_id, Outcome.skipped, error=ALREADY_CLAIMED))
            continue

        report.results.append(await _pay_out(db, chain, withdrawal_id, amount, destination))
        if report.results[-1].status in (Outcome.completed, Outcome.unconfirmed):
            remaining -= amount

    logger.info("[withdraw] Run finished: %d/%d completed", report.processed, report.total)
    return report


async def _pay_out(
    db: AsyncSession, chain: ChainClient, withdrawal_id: str, amount: Decimal, destination: str
) -> WithdrawalResult:
    try:
        receipt = await chain.transfer(destination, amount)
    except TransferUnconfirmedError as e:
        logger.error("[withdraw] Transfer for %s unconfirmed (tx=%s), leaving in processing: %s",
                     withdrawal_id, e.tx_hash, e.message)
        await _flag_unconfirmed(db, withdrawal_id, e.tx_hash, e.message)
        return WithdrawalResult(withdrawal_id, Outcome.unconfirmed, tx_hash=e.tx_hash, error=e.message)
    except ChainError as e:
        logger.error("[withdraw] Failed to send USDC for %s: %s", withdrawal_id, e.message)
        try:
            await ledger.release_withdrawal(db, withdrawal_id, e.message)
        except Exception:
            logger.exception("[withdraw] Could not return %s to the queue", withdrawal_id)
            await db.rollback()
        return WithdrawalResult(withdrawal_id, Outcome.failed, error=e.message)
    except Exception as e:
        # Unknown failure inside the client: the transfer may have been broadcast
        logger.exception("[withdraw] Unexpected transfer error for %s, leaving in processing", withdrawal_id)
        await _flag_unconfirmed(db, withdrawal_id, None, str(e))
        return WithdrawalResult(withdrawal_id, Outcome.unconfirmed, error=str(e))

    try:
        recorded = await ledger.complete_withdrawal(db, withdrawal_id, receipt.tx_hash)
    except Exception as e:
        logger.exception("[withdraw] Sent %s tx=%s but could not record completion", withdrawal_id, receipt.tx_hash)
        await db.rollback()
        await _flag_unconfirmed(db, withdrawal_id, receipt.tx_hash, f"Completion not recorded: {e}")
        return WithdrawalResult(withdrawal_id, Outcome.unconfirmed, tx_hash=receipt.tx_hash,
                                error="Transfer sent but completion not recorded")
    if not recorded:
        logger.error("[withdraw] %s left processing before completion of tx=%s", withdrawal_id, receipt.tx_hash)
        return WithdrawalResult(withdrawal_id, Outcome.unconfirmed, tx_hash=receipt.tx_hash,
                                error="Record changed while transfer was in flight")

    logger.info("[withdraw] Sent %s USDC to %s tx=%s", amount, destination, receipt.tx_hash)
    return WithdrawalResult(withdrawal_id, Outcome.completed, tx_hash=receipt.tx_hash)


async def _flag_unconfirmed(db: AsyncSession, withdrawal_id: str, tx_hash: Optional[str], error: str) -> None:
    try:
        await ledger.flag_unconfirmed_withdrawal(db, withdrawal_id, tx_hash, error)
    except Exception:
        logger.exception("[withdraw] Could not annotate unconfirmed withdrawal %s", withdrawal_id)
        await db.rollback()
