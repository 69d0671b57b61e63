#!/usr/bin/env python3
"""
Script to verify the Dare Betting backend is configured correctly.
Run this before taking real SOL bets.
"""
import os
import sys
import asyncio
import tempfile
from pathlib import Path
from dotenv import load_dotenv

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent / "backend"))

# Load environment
load_dotenv()


def print_header(text):
    """Print a formatted header."""
    print("\n" + "="*60)
    print(f"  {text}")
    print("="*60 + "\n")


def print_check(name, status, message=""):
    """Print a check result."""
    icon = "✅" if status else "❌"
    print(f"{icon} {name}")
    if message:
        print(f"   → {message}")


async def check_environment():
    """Check environment variables."""
    print_header("Checking Environment Configuration")

    required_vars = [
        "RPC_URL",
        "TREASURY_SECRET",
        "DATABASE_PATH",
        "ADMIN_WALLETS",
    ]

    all_present = True
    for var in required_vars:
        value = os.getenv(var)
        if value:
            display_value = value[:20] + "..." if len(value) > 20 else value
            print_check(f"{var}", True, f"Set to: {display_value}")
        else:
            print_check(f"{var}", False, "NOT SET!")
            all_present = False

    return all_present


async def check_imports():
    """Check the backend packages import."""
    print_header("Checking Python Imports")

    checks = []

    try:
        from solana.rpc.async_api import AsyncClient
        from solders.keypair import Keypair
        print_check("solana + solders", True)
        checks.append(True)
    except ImportError as e:
        print_check("solana packages", False, str(e))
        checks.append(False)

    try:
        import fastapi
        import uvicorn
        print_check("fastapi + uvicorn", True, f"fastapi {fastapi.__version__}")
        checks.append(True)
    except ImportError as e:
        print_check("web packages", False, str(e))
        checks.append(False)

    try:
        from database import Database, Dare, Bet, Payout
        from dares import SettlementEngine, SolanaTreasury
        print_check("Backend modules", True, "Database and settlement engine imported")
        checks.append(True)
    except ImportError as e:
        print_check("Backend modules", False, str(e))
        checks.append(False)

    return all(checks)


async def check_database():
    """Check database initialization against a scratch file."""
    print_header("Checking Database")

    try:
        from database import Database
        from database.models import User

        path = os.path.join(tempfile.mkdtemp(), "check_dares.db")
        db = Database(path)
        print_check("Database initialization", True, f"Created {path}")

        db.save_user(User(wallet_address="CheckWallet111", username="check_user"))
        retrieved = db.get_user("CheckWallet111")
        if retrieved and retrieved.username == "check_user":
            print_check("Save and retrieve user", True)
        else:
            print_check("Save and retrieve user", False, "User data mismatch")
            return False

        os.remove(path)
        print_check("Database cleanup", True, "Scratch database removed")
        return True
    except Exception as e:
        print_check("Database check", False, str(e))
        return False


async def check_settlement_math():
    """Check the split percentages on a 10 SOL pool."""
    print_header("Checking Settlement Math")

    try:
        from datetime import datetime, timedelta
        from database.models import Dare
        from dares import creator_fee, completer_reward, winners_share, LAMPORTS_PER_SOL

        dare = Dare(id="check", creator="CheckWallet111", title="Check",
                    deadline=datetime.utcnow() + timedelta(days=1),
                    total_pool=10 * LAMPORTS_PER_SOL)
        fee = creator_fee(dare)
        reward = completer_reward(dare)
        share = winners_share(dare)

        ok = (fee, reward, share) == (200_000_000, 5_000_000_000, 4_800_000_000)
        print_check("Pool split", ok, f"fee={fee} reward={reward} winners={share} lamports")
        return ok
    except Exception as e:
        print_check("Settlement math", False, str(e))
        return False


async def check_solana_connection():
    """Check Solana RPC connection."""
    print_header("Checking Solana RPC Connection")

    try:
        from solana.rpc.async_api import AsyncClient

        rpc_url = os.getenv("RPC_URL")
        if not rpc_url:
            print_check("RPC URL", False, "RPC_URL not set in .env")
            return False

        async with AsyncClient(rpc_url) as client:
            resp = await client.get_latest_blockhash()
            if resp.value:
                print_check("RPC connection", True, f"Connected to {rpc_url}")
                print_check("Latest blockhash", True, f"{str(resp.value.blockhash)[:20]}...")
                return True
            print_check("RPC connection", False, "No response from RPC")
            return False
    except Exception as e:
        print_check("Solana connection", False, str(e))
        return False


async def check_treasury():
    """Check the treasury keypair and balance."""
    print_header("Checking Treasury Wallet")

    try:
        from config import RPC_URL, TREASURY_SECRET, TREASURY_WALLET
        from dares import SolanaTreasury, LAMPORTS_PER_SOL

        if not TREASURY_SECRET:
            print_check("Treasury wallet", False, "TREASURY_SECRET not set")
            return False

        treasury = SolanaTreasury(RPC_URL, TREASURY_SECRET, TREASURY_WALLET)
        print_check("Load treasury wallet", True, f"Address: {treasury.address}")

        balance = await treasury.get_balance()
        print_check("Treasury balance", balance > 0, f"{balance / LAMPORTS_PER_SOL:.4f} SOL")

        if balance < LAMPORTS_PER_SOL // 10:
            print("   ⚠️  WARNING: Treasury has low balance!")
            print(f"   → Fund {treasury.address} so payout fees can be covered")

        return True
    except Exception as e:
        print_check("Treasury wallet", False, str(e))
        return False


async def main():
    """Run all checks."""
    print_header("🎯 Dare Betting - Setup Verification")

    results = []

    results.append(await check_environment())
    results.append(await check_imports())
    results.append(await check_database())
    results.append(await check_settlement_math())
    results.append(await check_solana_connection())
    results.append(await check_treasury())

    print_header("Summary")
    passed = sum(results)
    total = len(results)

    print(f"Checks Passed: {passed}/{total}")

    if passed == total:
        print("\n✅ All checks passed! You're ready to run the API.")
        print("\nNext steps:")
        print("  1. cd backend")
        print("  2. python api.py")
        print("  3. Place a small test bet (0.01 SOL) on devnet first")
        return 0
    else:
        print(f"\n❌ {total - passed} check(s) failed. Please fix the issues above.")
        print("\nCommon fixes:")
        print("  • Missing .env file: copy .env.example to .env")
        print("  • Missing packages: pip install -e .")
        print("  • Low balance: Fund your treasury wallet")
        return 1


if __name__ == "__main__":
    exit_code = asyncio.run(main())
    sys.exit(exit_code)
