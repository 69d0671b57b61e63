"""Treasury transfer verification against canned RPC responses."""
import asyncio
from types import SimpleNamespace

import pytest
from solders.keypair import Keypair

from dares import solana_ops
from dares import SolanaTreasury, VerificationError

TREASURY = str(Keypair().pubkey())
BETTOR = str(Keypair().pubkey())
TX = str(Keypair().sign_message(b"deposit"))


def transfer_ix(source, destination, lamports):
    return SimpleNamespace(parsed={
        "type": "transfer",
        "info": {"source": source, "destination": destination, "lamports": lamports},
    })


def tx_response(instructions, err=None):
    return SimpleNamespace(value=SimpleNamespace(transaction=SimpleNamespace(
        meta=SimpleNamespace(err=err),
        transaction=SimpleNamespace(message=SimpleNamespace(instructions=instructions)),
    )))


@pytest.fixture
def rpc(monkeypatch):
    """Replace AsyncClient; set rpc.response to what get_transaction returns."""
    state = SimpleNamespace(response=tx_response([]))

    class FakeClient:
        def __init__(self, url):
            self.url = url

        async def __aenter__(self):
            return self

        async def __aexit__(self, *exc):
            return False

        async def get_transaction(self, sig, **kwargs):
            return state.response

    monkeypatch.setattr(solana_ops, "AsyncClient", FakeClient)
    return state


def verify(min_lamports=1_000):
    treasury = SolanaTreasury("http://rpc.invalid", treasury_wallet=TREASURY)
    return asyncio.run(treasury.verify_transfer(TX, BETTOR, min_lamports))


def test_verified_transfer(rpc):
    rpc.response = tx_response([transfer_ix(BETTOR, TREASURY, 5_000)])
    assert verify() == 5_000


def test_transaction_not_found(rpc):
    rpc.response = SimpleNamespace(value=None)
    with pytest.raises(VerificationError, match="not found"):
        verify()


def test_failed_transaction(rpc):
    rpc.response = tx_response([transfer_ix(BETTOR, TREASURY, 5_000)], err={"InstructionError": [0, "x"]})
    with pytest.raises(VerificationError, match="failed on-chain"):
        verify()


def test_wrong_sender(rpc):
    rpc.response = tx_response([transfer_ix(str(Keypair().pubkey()), TREASURY, 5_000)])
    with pytest.raises(VerificationError) as exc:
        verify()
    assert "no transfer from bettor" in exc.value.reason


def test_wrong_destination(rpc):
    rpc.response = tx_response([transfer_ix(BETTOR, str(Keypair().pubkey()), 5_000)])
    with pytest.raises(VerificationError):
        verify()


def test_short_transfer(rpc):
    rpc.response = tx_response([transfer_ix(BETTOR, TREASURY, 999)])
    with pytest.raises(VerificationError, match="expected at least 1000"):
        verify()


def test_malformed_signature():
    treasury = SolanaTreasury("http://rpc.invalid", treasury_wallet=TREASURY)
    with pytest.raises(VerificationError, match="malformed"):
        asyncio.run(treasury.verify_transfer("not-a-signature", BETTOR, 1))


def test_payout_needs_keypair():
    treasury = SolanaTreasury("http://rpc.invalid", treasury_wallet=TREASURY)
    with pytest.raises(RuntimeError, match="not initialized"):
        asyncio.run(treasury.send_payout(BETTOR, 1))
