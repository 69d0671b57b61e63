"""
Solana treasury operations for Dare Betting.

Bets are plain SOL transfers into the treasury wallet; every payout is a
transfer out of it.
"""
import asyncio
import logging
from typing import Optional
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
import base58

from .errors import VerificationError

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


def keypair_from_base58(secret: str) -> Keypair:
    """Create keypair from base58 secret key."""
    secret_bytes = base58.b58decode(secret)
    return Keypair.from_bytes(secret_bytes)


class SolanaTreasury:
    """Treasury wallet: confirms bet deposits and sends payouts."""

    def __init__(self, rpc_url: str, treasury_secret: Optional[str] = None,
                 treasury_wallet: Optional[str] = None, max_retries: int = 3):
        self.rpc_url = rpc_url
        self.max_retries = max_retries
        self._keypair = keypair_from_base58(treasury_secret) if treasury_secret else None

        if self._keypair is not None:
            self.address = str(self._keypair.pubkey())
            if treasury_wallet and treasury_wallet != self.address:
                logger.warning(f"[TREASURY] TREASURY_WALLET {treasury_wallet} does not match secret key; using {self.address}")
        else:
            self.address = treasury_wallet

    async def get_balance(self) -> int:
        """Treasury balance in lamports.

        IMPORTANT: Raises exception on RPC failure (don't silently return 0).
        """
        if not self.address:
            raise RuntimeError("Treasury wallet not configured")

        last_error = None
        for attempt in range(self.max_retries):
            try:
                async with AsyncClient(self.rpc_url) as client:
                    resp = await client.get_balance(Pubkey.from_string(self.address), Confirmed)
                    return resp.value or 0
            except Exception as e:
                last_error = e
                logger.warning(f"[BALANCE] Attempt {attempt + 1}/{self.max_retries} failed: {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(1)

        logger.error(f"[BALANCE] All retries failed for treasury: {last_error}")
        raise RuntimeError(f"Failed to get treasury balance: {last_error}")

    async def verify_transfer(self, tx_signature: str, expected_sender: str, min_lamports: int) -> int:
        """Confirm a successful transfer of at least min_lamports from sender to the treasury.

        Returns:
            Lamports actually transferred

        Raises:
            VerificationError: with the reason the transfer was rejected
        """
        if not self.address:
            raise VerificationError("Transfer verification failed", "treasury wallet not configured")

        try:
            sig = Signature.from_string(tx_signature)
        except ValueError:
            raise VerificationError("Transfer verification failed", "malformed transaction signature")

        async with AsyncClient(self.rpc_url) as client:
            tx_resp = await client.get_transaction(
                sig,
                encoding="jsonParsed",
                commitment=Confirmed,
                max_supported_transaction_version=0
            )

        if not tx_resp.value:
            raise VerificationError("Transfer verification failed", "transaction not found on Solana")

        tx = tx_resp.value
        if tx.transaction.meta.err is not None:
            raise VerificationError("Transfer verification failed", "transaction failed on-chain")

        # Structure: tx.transaction.transaction.message.instructions
        for ix in tx.transaction.transaction.message.instructions:
            parsed = getattr(ix, "parsed", None)
            if not parsed or parsed.get("type") != "transfer":
                continue

            info = parsed.get("info", {})
            if info.get("destination") != self.address:
                continue
            if info.get("source") != expected_sender:
                logger.warning(f"[VERIFY] Sender mismatch: expected {expected_sender}, got {info.get('source')}")
                continue

            lamports = info.get("lamports", 0)
            if lamports < min_lamports:
                raise VerificationError(
                    "Transfer verification failed",
                    f"transferred {lamports} lamports, expected at least {min_lamports}"
                )

            logger.info(f"[VERIFY] Verified deposit: {lamports} lamports from {expected_sender}")
            return lamports

        raise VerificationError("Transfer verification failed", "no transfer from bettor to treasury in transaction")

    async def send_payout(self, recipient: str, lamports: int) -> str:
        """Transfer lamports from the treasury.

        Returns:
            Transaction signature; raises on failure after retries.
        """
        if self._keypair is None:
            raise RuntimeError("Treasury wallet not initialized")
        if lamports <= 0:
            raise ValueError(f"Invalid payout amount: {lamports}")

        last_error = None
        for attempt in range(self.max_retries):
            try:
                logger.info(f"[TRANSFER] Attempt {attempt + 1}: {lamports} lamports to {recipient}")

                async with AsyncClient(self.rpc_url) as client:
                    blockhash_resp = await client.get_latest_blockhash(Confirmed)

                    transfer_ix = transfer(
                        TransferParams(
                            from_pubkey=self._keypair.pubkey(),
                            to_pubkey=Pubkey.from_string(recipient),
                            lamports=lamports,
                        )
                    )
                    tx = Transaction.new_signed_with_payer(
                        [transfer_ix],
                        self._keypair.pubkey(),
                        [self._keypair],
                        blockhash_resp.value.blockhash
                    )

                    resp = await client.send_raw_transaction(bytes(tx), TxOpts(skip_preflight=True))
                    tx_sig = str(resp.value)
                    logger.info(f"[TRANSFER] Success! TX: {tx_sig}")
                    return tx_sig

            except Exception as e:
                last_error = e
                logger.warning(f"[TRANSFER] Attempt {attempt + 1}/{self.max_retries} failed: {e}")
                if attempt < self.max_retries - 1:
                    await asyncio.sleep(1)

        logger.error(f"[TRANSFER] All retries failed: {last_error}")
        raise RuntimeError(f"Transfer failed after {self.max_retries} attempts: {last_error}")
