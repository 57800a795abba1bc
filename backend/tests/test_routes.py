import pytest
from datetime import timedelta
from decimal import Decimal
from sqlalchemy import select
from vault.config import settings
from vault.models import Deposit, DepositStatus, Profile, ProfileRole, Withdrawal, WithdrawalStatus
from vault.models._common import utcnow
from vault.services import ledger
from conftest import SENDER, activity, webhook_body, sign, auth_headers, make_profile, reload

CRON_HEADERS = {"Authorization": f"Bearer {settings.CRON_SECRET}"}
DEST = "0xabcdef1234567890abcdef1234567890abcdef12"


# ── Deposit webhook ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_webhook_confirms_deposit(client, db):
    profile = await make_profile(db)
    await ledger.register_deposit(db, profile.id, Decimal("50"), SENDER)
    body = webhook_body(activity(50_000_000))

    r = await client.post("/api/webhooks/alchemy", content=body,
                          headers={"x-alchemy-signature": sign(body), "content-type": "application/json"})

    assert r.status_code == 200, r.text
    assert r.json() == {"ok": True, "confirmed": 1}
    assert (await reload(db, profile)).balance == Decimal("50")


@pytest.mark.asyncio
async def test_webhook_bad_signature_mutates_nothing(client, db):
    profile = await make_profile(db)
    deposit = await ledger.register_deposit(db, profile.id, Decimal("50"), SENDER)
    body = webhook_body(activity(50_000_000))

    r = await client.post("/api/webhooks/alchemy", content=body,
                          headers={"x-alchemy-signature": sign(body, key="wrong-key")})

    assert r.status_code == 401
    assert "error" in r.json()
    assert (await reload(db, deposit)).status == DepositStatus.pending
    assert (await reload(db, profile)).balance == Decimal("0")


@pytest.mark.asyncio
async def test_webhook_missing_signature(client):
    r = await client.post("/api/webhooks/alchemy", content=webhook_body())
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_webhook_invalid_json(client):
    body = b"{not json"
    r = await client.post("/api/webhooks/alchemy", content=body, headers={"x-alchemy-signature": sign(body)})
    assert r.status_code == 400
    assert r.json() == {"error": "Invalid JSON"}


@pytest.mark.asyncio
async def test_webhook_missing_platform_address(client, monkeypatch):
    monkeypatch.setattr(settings, "PLATFORM_WALLET_ADDRESS", "")
    body = webhook_body(activity(1_000_000))
    r = await client.post("/api/webhooks/alchemy", content=body, headers={"x-alchemy-signature": sign(body)})
    assert r.status_code == 500


@pytest.mark.asyncio
async def test_webhook_without_activities(client):
    body = b'{"event": {}}'
    r = await client.post("/api/webhooks/alchemy", content=body, headers={"x-alchemy-signature": sign(body)})
    assert r.status_code == 200
    assert r.json()["confirmed"] == 0


# ── Withdrawal trigger ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cron_requires_secret(client):
    r = await client.get("/api/cron/process-withdrawals")
    assert r.status_code == 401
    r = await client.get("/api/cron/process-withdrawals", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_cron_rejects_when_secret_unset(client, monkeypatch):
    monkeypatch.setattr(settings, "CRON_SECRET", "")
    r = await client.get("/api/cron/process-withdrawals", headers={"Authorization": "Bearer "})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_cron_no_pending(client):
    r = await client.get("/api/cron/process-withdrawals", headers=CRON_HEADERS)
    assert r.status_code == 200
    assert r.json()["processed"] == 0


@pytest.mark.asyncio
async def test_cron_processes_queue(client, db, chain):
    profile = await make_profile(db, balance="100")
    withdrawal = await ledger.request_withdrawal(db, profile.id, Decimal("25"), DEST)

    r = await client.get("/api/cron/process-withdrawals", headers=CRON_HEADERS)

    assert r.status_code == 200, r.text
    body = r.json()
    assert body["ok"] is True
    assert body["processed"] == 1
    assert body["total"] == 1
    assert body["results"][0]["id"] == withdrawal.id
    assert body["results"][0]["status"] == "completed"
    assert chain.transfers == [(DEST, Decimal("25"))]
    assert (await reload(db, withdrawal)).status == WithdrawalStatus.completed


@pytest.mark.asyncio
async def test_cron_balance_failure_returns_500(client, db, chain):
    profile = await make_profile(db, balance="100")
    withdrawal = await ledger.request_withdrawal(db, profile.id, Decimal("25"), DEST)
    chain.balance_error = True

    r = await client.get("/api/cron/process-withdrawals", headers=CRON_HEADERS)

    assert r.status_code == 500
    assert r.json() == {"error": "Cannot reach hot wallet"}
    assert (await reload(db, withdrawal)).status == WithdrawalStatus.pending


# ── User endpoints ─────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_register_deposit_normalizes_sender(client, db):
    profile = await make_profile(db)
    r = await client.post("/api/vault/deposits", headers=auth_headers(profile.id),
                          json={"amount": "12.5", "sender_address": SENDER.upper().replace("0X", "0x")})
    assert r.status_code == 201, r.text
    assert r.json()["status"] == "pending"
    assert r.json()["sender_address"] == SENDER
    deposit = await db.scalar(select(Deposit).where(Deposit.user_id == profile.id))
    assert deposit.amount == Decimal("12.5")


@pytest.mark.asyncio
async def test_register_deposit_rejects_bad_address(client, db):
    profile = await make_profile(db)
    r = await client.post("/api/vault/deposits", headers=auth_headers(profile.id),
                          json={"amount": "1", "sender_address": "not-an-address"})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_withdraw_debits_balance(client, db):
    profile = await make_profile(db, balance="30")
    r = await client.post("/api/vault/withdrawals", headers=auth_headers(profile.id),
                          json={"amount": "20", "wallet_address": DEST})
    assert r.status_code == 201, r.text
    assert r.json()["status"] == "pending"
    assert (await reload(db, profile)).balance == Decimal("10")

    r = await client.post("/api/vault/withdrawals", headers=auth_headers(profile.id),
                          json={"amount": "20", "wallet_address": DEST})
    assert r.status_code == 400
    assert "Insufficient balance" in r.json()["error"]
    assert (await reload(db, profile)).balance == Decimal("10")


@pytest.mark.asyncio
async def test_vault_summary_and_history(client, db):
    profile = await make_profile(db, balance="30")
    await ledger.register_deposit(db, profile.id, Decimal("5"), SENDER)
    await ledger.request_withdrawal(db, profile.id, Decimal("10"), DEST)

    r = await client.get("/api/vault", headers=auth_headers(profile.id))
    assert r.status_code == 200
    assert Decimal(r.json()["balance"]) == Decimal("20")
    assert Decimal(r.json()["pending_withdrawal"]) == Decimal("10")

    r = await client.get("/api/vault/history", headers=auth_headers(profile.id))
    assert len(r.json()["deposits"]) == 1
    assert len(r.json()["withdrawals"]) == 1


@pytest.mark.asyncio
async def test_first_authenticated_call_provisions_profile(client, db):
    r = await client.get("/api/vault", headers=auth_headers("new-profile-id"))
    assert r.status_code == 200
    assert Decimal(r.json()["balance"]) == Decimal("0")
    assert await db.get(Profile, "new-profile-id") is not None


@pytest.mark.asyncio
async def test_invalid_token_rejected(client):
    r = await client.get("/api/vault", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


# ── Operator endpoints ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_admin_endpoints_require_admin(client, db):
    profile = await make_profile(db)
    r = await client.get("/api/admin/withdrawals/stuck", headers=auth_headers(profile.id))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_admin_resolves_stuck_withdrawal(client, db):
    admin = await make_profile(db, role=ProfileRole.admin)
    user = await make_profile(db)
    stuck = Withdrawal(user_id=user.id, amount=Decimal("7"), wallet_address=DEST,
                       status=WithdrawalStatus.processing, tx_hash="0xbeef",
                       updated_at=utcnow() - timedelta(hours=1))
    db.add(stuck)
    await db.commit()

    r = await client.get("/api/admin/withdrawals/stuck", headers=auth_headers(admin.id))
    assert [w["id"] for w in r.json()] == [stuck.id]

    r = await client.put(f"/api/admin/withdrawals/{stuck.id}/resolve", headers=auth_headers(admin.id),
                         json={"outcome": "completed", "tx_hash": "0xbeef"})
    assert r.status_code == 200, r.text
    assert (await reload(db, stuck)).status == WithdrawalStatus.completed

    r = await client.put(f"/api/admin/withdrawals/{stuck.id}/resolve", headers=auth_headers(admin.id),
                         json={"outcome": "pending"})
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_admin_cancel_refunds(client, db):
    admin = await make_profile(db, role=ProfileRole.admin)
    user = await make_profile(db, balance="40")
    withdrawal = await ledger.request_withdrawal(db, user.id, Decimal("15"), DEST)

    r = await client.put(f"/api/admin/withdrawals/{withdrawal.id}/cancel", headers=auth_headers(admin.id),
                         json={"reason": "sanctioned address"})
    assert r.status_code == 200, r.text
    assert (await reload(db, withdrawal)).status == WithdrawalStatus.failed
    assert (await reload(db, user)).balance == Decimal("40")

    r = await client.put("/api/admin/withdrawals/missing/cancel", headers=auth_headers(admin.id), json={})
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_admin_unmatched_deposit_report(client, db):
    admin = await make_profile(db, role=ProfileRole.admin)
    user = await make_profile(db)
    old = await ledger.register_deposit(db, user.id, Decimal("3"), SENDER)
    old.created_at = utcnow() - timedelta(days=3)
    await db.commit()

    r = await client.get("/api/admin/deposits/unmatched?older_than_hours=24", headers=auth_headers(admin.id))
    assert r.status_code == 200
    assert [d["id"] for d in r.json()] == [old.id]
