import re
from decimal import Decimal
from typing import Literal, Optional
from pydantic import BaseModel, Field, field_validator

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


def _check_address(v: str) -> str:
    v = v.strip()
    if not ADDRESS_RE.match(v):
        raise ValueError("Invalid wallet address")
    return v


class DepositCreateRequest(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=18, decimal_places=6)
    sender_address: str

    @field_validator("sender_address")
    @classmethod
    def normalize_sender(cls, v):
        return _check_address(v).lower()


class WithdrawRequest(BaseModel):
    amount: Decimal = Field(gt=0, max_digits=18, decimal_places=6)
    wallet_address: str

    @field_validator("wallet_address")
    @classmethod
    def check_wallet(cls, v):
        return _check_address(v)


class ResolveWithdrawalRequest(BaseModel):
    outcome: Literal["completed", "pending"]
    tx_hash: Optional[str] = None


class CancelWithdrawalRequest(BaseModel):
    reason: str = ""
