"""Shared fixtures: scratch database, fake treasury, fixed clock."""
import os
import tempfile

# Module-level singletons (audit logger, API database) read these on import
_TMP = tempfile.mkdtemp(prefix="dares-tests-")
os.environ["DATABASE_PATH"] = os.path.join(_TMP, "api.db")
os.environ["TREASURY_SECRET"] = ""
os.environ["TREASURY_WALLET"] = "Treasury1111111111111111111111111111111111"
os.environ["AUTO_APPROVE_PROOFS"] = "false"
os.environ["CLUSTER"] = "devnet"

from datetime import datetime, timedelta  # noqa: E402
from itertools import count  # noqa: E402

import pytest  # noqa: E402

from database import Database, BetType  # noqa: E402
from dares import SettlementEngine, VerificationError, LAMPORTS_PER_SOL  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, 0)

CREATOR = "Creator111111111111111111111111111111111111"
COMPLETER = "Completer1111111111111111111111111111111111"
ALICE = "Alice11111111111111111111111111111111111111"
BOB = "Bob1111111111111111111111111111111111111111"
ADMIN = "Admin111111111111111111111111111111111111111"


def sol(amount) -> int:
    return int(round(amount * LAMPORTS_PER_SOL))


class FakeTreasury:
    """Stands in for SolanaTreasury: every transfer verifies unless told otherwise."""

    def __init__(self):
        self.address = os.environ["TREASURY_WALLET"]
        self.verify_error = None
        self.send_error = None
        self.balance = 0
        self.verified = []
        self.sent = []
        self._sigs = count(1)

    async def verify_transfer(self, tx_signature, expected_sender, min_lamports):
        if self.verify_error:
            raise VerificationError("Transfer verification failed", self.verify_error)
        self.verified.append((tx_signature, expected_sender, min_lamports))
        return min_lamports

    async def send_payout(self, recipient, lamports):
        if self.send_error:
            raise RuntimeError(self.send_error)
        signature = f"payout-sig-{next(self._sigs)}"
        self.sent.append((recipient, lamports, signature))
        return signature

    async def get_balance(self):
        return self.balance


class Clock:
    """Settable clock for the engine."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def db(tmp_path):
    return Database(str(tmp_path / "dares.db"))


@pytest.fixture
def treasury():
    return FakeTreasury()


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def engine(db, treasury, clock):
    """Engine that completes a dare as soon as proof is submitted."""
    return SettlementEngine(db, treasury, clock=clock, auto_approve_proofs=True, admin_wallets={ADMIN})


@pytest.fixture
def manual_engine(db, treasury, clock):
    """Engine whose proofs wait for an admin."""
    return SettlementEngine(db, treasury, clock=clock, auto_approve_proofs=False, admin_wallets={ADMIN})


@pytest.fixture
def dare(engine, clock):
    return engine.create_dare(CREATOR, "Eat a ghost pepper", clock() + timedelta(days=1),
                              description="On camera", on_chain_id="dare-1")


_tx_ids = count(1)


async def place(engine, dare, bettor, amount_sol, bet_type=BetType.WILL_DO, tx=None):
    """Place a bet with a fresh transaction signature."""
    return await engine.place_bet(dare.id, bettor, sol(amount_sol), bet_type,
                                  tx or f"bet-tx-{next(_tx_ids)}")
