import hashlib
import hmac
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from vault.config import settings
from vault.errors import AuthError, ValidationError
from vault.models import DepositStatus
from vault.services import ledger
from vault.services.chain_client import from_base_units

logger = logging.getLogger(__name__)

# Alchemy reports ERC-20 transfers as "token" on Polygon and "erc20" on Ethereum
TOKEN_TRANSFER_CATEGORIES = {"token", "erc20"}


def verify_signature(raw_body: bytes, signature: Optional[str], signing_key: Optional[str] = None) -> None:
    """Check the Alchemy HMAC-SHA256 signature over the unparsed body.

    Raises AuthError on a missing key, missing header or mismatch.
    """
    signing_key = settings.ALCHEMY_WEBHOOK_SIGNING_KEY if signing_key is None else signing_key
    if not signing_key:
        logger.error("[webhook] ALCHEMY_WEBHOOK_SIGNING_KEY not set")
        raise AuthError("Invalid signature")
    if not signature:
        raise AuthError("Invalid signature")
    expected = hmac.new(signing_key.encode(), raw_body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected.encode(), signature.encode()):
        raise AuthError("Invalid signature")


@dataclass
class TokenTransfer:
    from_address: str
    to_address: str
    amount: Decimal
    tx_hash: Optional[str]


def parse_raw_value(raw_value, decimals: int) -> Decimal:
    """Hex ("0x2faf080") or decimal ("50000000") base units to a human amount."""
    if isinstance(raw_value, int):
        units = raw_value
    elif isinstance(raw_value, str):
        text = raw_value.strip()
        units = int(text, 16) if text.lower().startswith("0x") else int(text)
    else:
        raise ValidationError(f"Unsupported raw value: {raw_value!r}")
    return from_base_units(units, decimals)


def extract_transfer(
    activity: dict,
    platform_address: str,
    token_address: Optional[str] = None,
    decimals: Optional[int] = None,
) -> Optional[TokenTransfer]:
    """Return the USDC transfer into the platform wallet described by an
    activity, or None if the activity is not one."""
    token_address = (token_address or settings.USDC_CONTRACT_ADDRESS).lower()
    decimals = settings.USDC_DECIMALS if decimals is None else decimals

    if not isinstance(activity, dict):
        return None
    if activity.get("category") not in TOKEN_TRANSFER_CATEGORIES:
        return None

    raw_contract = activity.get("rawContract") or {}
    log = activity.get("log") or {}
    contract = (raw_contract.get("address") or log.get("address") or "").lower()
    if contract != token_address:
        return None
    if (activity.get("toAddress") or "").lower() != platform_address.lower():
        return None

    from_address = (activity.get("fromAddress") or "").lower()
    raw_value = raw_contract.get("rawValue") or log.get("data")
    if not from_address or not raw_value:
        return None

    try:
        amount = parse_raw_value(raw_value, decimals)
    except (ValueError, ValidationError):
        # Alchemy sometimes gives a numeric "value" field directly
        try:
            amount = Decimal(str(activity.get("value") or 0))
        except InvalidOperation:
            amount = Decimal("0")
    if amount <= 0:
        return None

    return TokenTransfer(
        from_address=from_address,
        to_address=platform_address.lower(),
        amount=amount,
        tx_hash=activity.get("hash") or None,
    )


async def reconcile_transfer(db: AsyncSession, transfer: TokenTransfer, tolerance: Decimal) -> bool:
    """Match one inbound transfer to a pending claim and credit it. Returns
    True only when this call performed the credit."""
    logger.info("[deposit] USDC received: %s from %s tx=%s",
                transfer.amount, transfer.from_address, transfer.tx_hash)

    if transfer.tx_hash:
        seen = await ledger.find_deposit_by_tx_hash(db, transfer.tx_hash)
        if seen and seen.status != DepositStatus.pending:
            logger.info("[deposit] tx=%s already applied to deposit %s", transfer.tx_hash, seen.id)
            return False
        deposit = seen
    else:
        deposit = None

    if deposit is None:
        deposit = await ledger.find_matching_deposit(db, transfer.from_address, transfer.amount, tolerance)
    if deposit is None:
        logger.info("[deposit] unmatched: no pending deposit for %s from %s",
                    transfer.amount, transfer.from_address)
        return False

    deposit_id, user_id = deposit.id, deposit.user_id
    if transfer.tx_hash:
        await ledger.attach_deposit_tx_hash(db, deposit_id, transfer.tx_hash)

    if not await ledger.confirm_deposit(db, deposit_id):
        logger.info("[deposit] Deposit %s was already confirmed", deposit_id)
        return False

    logger.info("[deposit] Confirmed deposit %s for user %s", deposit_id, user_id)
    return True


async def reconcile_activities(
    db: AsyncSession,
    activities: list,
    platform_address: str,
    tolerance: Optional[Decimal] = None,
) -> int:
    """Process every activity in a notification; one bad activity never stops
    the batch. Returns the number of deposits confirmed."""
    tolerance = settings.DEPOSIT_MATCH_TOLERANCE if tolerance is None else tolerance
    confirmed = 0
    for activity in activities:
        try:
            transfer = extract_transfer(activity, platform_address)
            if transfer is None:
                continue
            if await reconcile_transfer(db, transfer, tolerance):
                confirmed += 1
        except Exception:
            logger.exception("[deposit] Failed to process activity %s",
                             activity.get("hash") if isinstance(activity, dict) else activity)
            await db.rollback()
    return confirmed
