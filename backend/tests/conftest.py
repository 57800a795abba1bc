import hashlib
import hmac
import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALCHEMY_WEBHOOK_SIGNING_KEY", "whsec_test")
os.environ.setdefault("PLATFORM_WALLET_ADDRESS", "0x00000000000000000000000000000000000000aa")
os.environ.setdefault("CRON_SECRET", "cron-test-secret")
os.environ.setdefault("WITHDRAWAL_SCHEDULE_MINUTES", "0")

from decimal import Decimal
from typing import Optional

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker

from vault.config import settings
from vault.core.deps import get_chain_client
from vault.core.security import create_access_token
from vault.database import Base, get_db
from vault.errors import ChainError, TransferUnconfirmedError
from vault.main import app
from vault.models import Profile, ProfileRole
from vault.services.chain_client import TransferReceipt

USDC = settings.USDC_CONTRACT_ADDRESS
PLATFORM = settings.PLATFORM_WALLET_ADDRESS
HOT_WALLET = "0x00000000000000000000000000000000000000bb"
SENDER = "0x1234567890abcdef1234567890abcdef12345678"


class FakeChain:
    """Deterministic stand-in for the Polygon client."""

    hot_wallet_address = HOT_WALLET

    def __init__(self, balance="0", fail=None, unconfirmed=None, balance_error=False):
        self.balance = Decimal(str(balance))
        self.fail = set(fail or [])
        self.unconfirmed = set(unconfirmed or [])
        self.balance_error = balance_error
        self.transfers = []
        self.balance_queries = 0

    async def balance_of(self, address: str) -> Decimal:
        self.balance_queries += 1
        if self.balance_error:
            raise ChainError("RPC eth_call failed: HTTP 503")
        return self.balance

    async def transfer(self, destination: str, amount: Decimal) -> TransferReceipt:
        tx_hash = "0x" + format(len(self.transfers) + 1, "064x")
        if destination in self.fail:
            raise ChainError("execution reverted")
        if destination in self.unconfirmed:
            self.transfers.append((destination, amount))
            raise TransferUnconfirmedError("not confirmed in time", tx_hash=tx_hash)
        self.transfers.append((destination, amount))
        self.balance -= amount
        return TransferReceipt(tx_hash=tx_hash, gas_used=52000)


def sign(body: bytes, key: Optional[str] = None) -> str:
    key = key or settings.ALCHEMY_WEBHOOK_SIGNING_KEY
    return hmac.new(key.encode(), body, hashlib.sha256).hexdigest()


def activity(amount_units: int, sender: str = SENDER, tx_hash: str = "0xabc1", **overrides) -> dict:
    act = {
        "category": "token",
        "fromAddress": sender,
        "toAddress": PLATFORM,
        "hash": tx_hash,
        "value": amount_units / 1_000_000,
        "rawContract": {"address": USDC.lower(), "rawValue": hex(amount_units), "decimals": 6},
    }
    act.update(overrides)
    return act


def webhook_body(*activities) -> bytes:
    return json.dumps({
        "webhookId": "wh_test",
        "type": "ADDRESS_ACTIVITY",
        "event": {"network": "MATIC_MAINNET", "activity": list(activities)},
    }).encode()


def auth_headers(profile_id: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(profile_id)}"}


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vault.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def chain():
    return FakeChain(balance="1000")


@pytest_asyncio.fixture
async def client(session_factory, chain):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_chain():
        yield chain

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_chain_client] = override_chain
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


async def make_profile(db, balance="0", role=ProfileRole.user) -> Profile:
    profile = Profile(balance=Decimal(str(balance)), locked_balance=Decimal("0"), role=role)
    db.add(profile)
    await db.commit()
    await db.refresh(profile)
    return profile


async def reload(db, obj):
    await db.refresh(obj)
    return obj
