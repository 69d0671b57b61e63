"""HTTP surface: request shapes, SOL conversion and error status codes."""
import asyncio
import time
from collections import defaultdict
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from solders.keypair import Keypair

import api
from auth import build_auth_message
from database import BetType

from conftest import sol


@pytest.fixture
def client(engine, monkeypatch):
    monkeypatch.setattr(api, "engine", engine)
    monkeypatch.setattr(api, "treasury", engine.treasury)
    monkeypatch.setattr(api, "rate_limit_store", defaultdict(lambda: defaultdict(list)))
    return TestClient(api.app)


@pytest.fixture
def creator():
    return Keypair()


@pytest.fixture
def bettor():
    return Keypair()


def tx_sig():
    """A real-looking base58 transaction signature."""
    return str(Keypair().sign_message(b"transfer"))


def signed_body(keypair, action, dare_id, **extra):
    timestamp = int(time.time() * 1000)
    message = build_auth_message(action, dare_id, timestamp)
    body = {
        "dareId": dare_id,
        "userWallet": str(keypair.pubkey()),
        "signature": str(keypair.sign_message(message.encode())),
        "timestamp": timestamp,
    }
    body.update(extra)
    return body


def proof_body(keypair, dare_id, proof_hash="QmVideoHash"):
    body = signed_body(keypair, "SubmitProof", dare_id, proofHash=proof_hash)
    body["submitter"] = body.pop("userWallet")
    return body


def create_dare(client, clock, creator, **extra):
    body = {
        "creator": str(creator.pubkey()),
        "title": "Cold shower for a week",
        "deadline": (clock() + timedelta(days=1)).isoformat(),
        "onChainId": "chain-dare-1",
    }
    body.update(extra)
    resp = client.post("/api/dares", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()["dare"]


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


def test_create_and_fetch_dare(client, clock, creator):
    dare = create_dare(client, clock, creator, minBet=0.1)
    assert dare["minBet"] == 0.1
    assert dare["totalPool"] == 0

    resp = client.get("/api/dares/chain-dare-1")
    assert resp.status_code == 200
    body = resp.json()
    assert body["dare"]["id"] == dare["id"]
    assert body["settlement"]["state"] == "open"

    listed = client.get("/api/dares", params={"creator": str(creator.pubkey())}).json()["data"]
    assert [d["id"] for d in listed] == [dare["id"]]


def test_create_dare_in_the_past(client, clock, creator):
    resp = client.post("/api/dares", json={
        "creator": str(creator.pubkey()),
        "title": "Too late",
        "deadline": (clock() - timedelta(hours=1)).isoformat(),
    })
    assert resp.status_code == 400


def test_unknown_dare(client):
    assert client.get("/api/dares/missing").status_code == 404


def test_place_bet_in_sol(client, clock, creator, bettor, treasury):
    dare = create_dare(client, clock, creator)
    first_sig = tx_sig()
    resp = client.post("/api/bets", json={
        "bettor": str(bettor.pubkey()),
        "dareId": dare["id"],
        "amount": 0.5,
        "betType": "WILL_DO",
        "txSignature": first_sig,
        "onChainId": "chain-bet-1",
    })
    assert resp.status_code == 200, resp.text
    assert resp.json()["bet"]["amount"] == 0.5
    assert treasury.verified[-1][2] == sol(0.5)

    bets = client.get("/api/bets", params={"bettor": str(bettor.pubkey())}).json()["data"]
    assert [b["onChainId"] for b in bets] == ["chain-bet-1"]

    replay = client.post("/api/bets", json={
        "bettor": str(bettor.pubkey()),
        "dareOnChainId": "chain-dare-1",
        "amount": 0.5,
        "betType": "WONT_DO",
        "txSignature": first_sig,
    })
    assert replay.status_code == 400
    assert "already used" in replay.json()["detail"]


def test_place_bet_bad_body(client, bettor):
    resp = client.post("/api/bets", json={"bettor": str(bettor.pubkey()), "amount": 1})
    assert resp.status_code == 422


def test_place_bet_unverified_transfer(client, clock, creator, bettor, treasury):
    dare = create_dare(client, clock, creator)
    treasury.verify_error = "Sender does not match bettor"
    resp = client.post("/api/bets", json={
        "bettor": str(bettor.pubkey()),
        "dareId": dare["id"],
        "amount": 1,
        "betType": "WILL_DO",
        "txSignature": tx_sig(),
    })
    assert resp.status_code == 400
    assert "Sender does not match bettor" in resp.json()["detail"]


def test_claim_flow(client, engine, clock, creator, bettor, treasury):
    dare = create_dare(client, clock, creator)
    loser = Keypair()
    asyncio.run(engine.place_bet(dare["id"], str(bettor.pubkey()), sol(5), BetType.WILL_DO, "tx-w"))
    asyncio.run(engine.place_bet(dare["id"], str(loser.pubkey()), sol(3), BetType.WONT_DO, "tx-l"))

    resp = client.post("/api/proofs/submit", json=proof_body(creator, dare["id"]))
    assert resp.status_code == 200, resp.text
    assert resp.json()["dare"]["isCompleted"] is True

    fee = client.post("/api/payouts/creator", json=signed_body(creator, "ClaimCreatorFee", dare["id"]))
    assert fee.status_code == 200, fee.text
    assert fee.json()["amount"] == 0.16

    nxt = client.post("/api/payouts/next", json=signed_body(creator, "ClaimNext", dare["id"]))
    assert nxt.json()["kind"] == "completer_reward"
    assert nxt.json()["amount"] == 4

    win = client.post("/api/payouts/claim", json=signed_body(bettor, "ClaimWinnings", dare["id"]))
    assert win.status_code == 200
    assert win.json()["amount"] == 3.84
    assert win.json()["explorerUrl"].endswith("?cluster=devnet")

    again = client.post("/api/payouts/claim", json=signed_body(bettor, "ClaimWinnings", dare["id"]))
    assert again.status_code == 400

    lost = client.post("/api/payouts/claim", json=signed_body(loser, "ClaimWinnings", dare["id"]))
    assert lost.status_code == 400
    assert len(treasury.sent) == 3


def test_claim_with_wrong_action_signature(client, clock, creator):
    dare = create_dare(client, clock, creator)
    body = signed_body(creator, "ClaimWinnings", dare["id"])
    resp = client.post("/api/payouts/creator", json=body)
    assert resp.status_code == 401


def test_cash_out(client, engine, clock, creator, bettor, treasury):
    dare = create_dare(client, clock, creator)
    asyncio.run(engine.place_bet(dare["id"], str(bettor.pubkey()), sol(1), BetType.WILL_DO, "tx-c"))

    resp = client.post("/api/bets/cashout", json=signed_body(bettor, "CashOut", dare["id"]))
    assert resp.status_code == 200, resp.text
    assert resp.json()["amount"] == 0.9

    view = client.get(f"/api/dares/{dare['id']}").json()["settlement"]
    assert view["totalPool"] == 0


def test_user_profile(client, clock, creator):
    wallet = str(creator.pubkey())
    resp = client.post("/api/users", json={"walletAddress": wallet, "username": "DareDevil", "bio": "hi"})
    assert resp.status_code == 200, resp.text
    create_dare(client, clock, creator)

    user = client.get(f"/api/users/{wallet}").json()["user"]
    assert user["username"] == "daredevil"
    assert user["daresCreated"] == 1

    taken = client.post("/api/users", json={"walletAddress": str(Keypair().pubkey()), "username": "daredevil"})
    assert taken.status_code == 400


def test_reconcile_requires_admin(client, engine):
    admin = Keypair()
    engine.admin_wallets = {str(admin.pubkey())}
    timestamp = int(time.time() * 1000)

    params = {
        "adminWallet": str(admin.pubkey()),
        "signature": str(admin.sign_message(build_auth_message("Reconcile", "all", timestamp).encode())),
        "timestamp": timestamp,
    }
    resp = client.get("/api/admin/reconcile", params=params)
    assert resp.status_code == 200, resp.text
    assert resp.json()["stats"]["totalBets"] == 0

    outsider = Keypair()
    params["adminWallet"] = str(outsider.pubkey())
    assert client.get("/api/admin/reconcile", params=params).status_code == 403


def test_audit_log_endpoint(client, engine, clock, creator):
    admin = Keypair()
    engine.admin_wallets = {str(admin.pubkey())}
    dare = create_dare(client, clock, creator)

    timestamp = int(time.time() * 1000)
    resp = client.get("/api/admin/audit", params={
        "adminWallet": str(admin.pubkey()),
        "signature": str(admin.sign_message(build_auth_message("ViewAudit", "all", timestamp).encode())),
        "timestamp": timestamp,
        "dareId": dare["id"],
    })
    assert resp.status_code == 200, resp.text
    assert [e["event_type"] for e in resp.json()["events"]] == ["dare_created"]


def test_unsigned_proof_rejected(client, engine, clock, creator, bettor, treasury):
    dare = create_dare(client, clock, creator)
    asyncio.run(engine.place_bet(dare["id"], str(bettor.pubkey()), sol(10), BetType.WONT_DO, "tx-p"))
    stranger = Keypair()

    resp = client.post("/api/proofs/submit", json={
        "dareId": dare["id"],
        "submitter": str(stranger.pubkey()),
        "proofHash": "garbage",
    })
    assert resp.status_code == 401

    # Signed by someone else on the submitter's behalf
    forged = proof_body(Keypair(), dare["id"], "garbage")
    forged["submitter"] = str(stranger.pubkey())
    assert client.post("/api/proofs/submit", json=forged).status_code == 401

    assert client.get(f"/api/dares/{dare['id']}").json()["dare"]["isCompleted"] is False
    assert treasury.sent == []


def test_pending_proof_cannot_be_claimed(client, engine, clock, creator, bettor, treasury):
    engine.auto_approve_proofs = False
    dare = create_dare(client, clock, creator)
    asyncio.run(engine.place_bet(dare["id"], str(bettor.pubkey()), sol(10), BetType.WONT_DO, "tx-q"))
    completer = Keypair()

    resp = client.post("/api/proofs/submit", json=proof_body(completer, dare["id"]))
    assert resp.status_code == 200, resp.text
    assert resp.json()["dare"]["isCompleted"] is False

    claim = client.post("/api/payouts/completer", json=signed_body(completer, "ClaimCompleterReward", dare["id"]))
    assert claim.status_code == 400
    assert treasury.sent == []


@pytest.mark.parametrize("amount", ["NaN", "inf", "-inf", 0, -1])
def test_bet_amount_must_be_finite_and_positive(client, clock, creator, bettor, amount):
    dare = create_dare(client, clock, creator)
    resp = client.post("/api/bets", json={
        "bettor": str(bettor.pubkey()),
        "dareId": dare["id"],
        "amount": amount,
        "betType": "WILL_DO",
        "txSignature": tx_sig(),
    })
    assert resp.status_code == 422


@pytest.mark.parametrize("min_bet", ["NaN", "inf", -0.5])
def test_min_bet_must_be_finite(client, clock, creator, min_bet):
    resp = client.post("/api/dares", json={
        "creator": str(creator.pubkey()),
        "title": "Bad minimum",
        "deadline": (clock() + timedelta(days=1)).isoformat(),
        "minBet": min_bet,
    })
    assert resp.status_code == 422
