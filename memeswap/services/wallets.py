import logging
from datetime import datetime, timezone
from decimal import Decimal

from solders.keypair import Keypair
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from memeswap.config import settings
from memeswap.core.exceptions import InsufficientBalance, NotFoundError, TradingError, ValidationError
from memeswap.models.trade import Trade, TradeStatus
from memeswap.models.transfer import Deposit, Withdrawal, WithdrawalStatus
from memeswap.models.wallet import Wallet
from memeswap.services import ledger
from memeswap.services.keystore import decrypt_keypair, generate_wallet_keys
from memeswap.services.solana_rpc import SolanaRpcClient, lamports_to_sol, sol_to_lamports
from memeswap.services.transactions import build_sol_transfer, is_valid_address, sign_transaction

logger = logging.getLogger(__name__)

MAX_AIRDROP_SOL = Decimal("2")


async def get_user_wallet(db: AsyncSession, user_id: int) -> Wallet:
    wallet = await ledger.get_wallet(db, user_id)
    if wallet is None:
        raise NotFoundError("Wallet not found")
    return wallet


async def create_wallet(db: AsyncSession, user_id: int) -> Wallet:
    if await ledger.get_wallet(db, user_id) is not None:
        raise ValidationError("User already has a wallet")
    public_key, encrypted = generate_wallet_keys()
    wallet = Wallet(
        user_id=user_id,
        public_key=public_key,
        encrypted_private_key=encrypted,
        balance=Decimal("0"),
        locked_balance=Decimal("0"),
    )
    db.add(wallet)
    await db.commit()
    await db.refresh(wallet)
    logger.info("Created wallet %s for user %s", public_key, user_id)
    return wallet


def load_keypair(wallet: Wallet) -> Keypair:
    return decrypt_keypair(wallet.encrypted_private_key)


async def sync_balance(db: AsyncSession, user_id: int, chain: SolanaRpcClient) -> Wallet:
    """Overwrite the stored SOL balance with the on-chain one.

    Only allowed while nothing is in flight: a pending trade or withdrawal may
    already be reflected on-chain but not yet in the ledger, and settling it
    afterwards would count it twice.
    """
    wallet = await get_user_wallet(db, user_id)
    lamports = await chain.get_balance(wallet.public_key)
    wallet = await ledger.get_wallet(db, user_id, lock=True)
    pending_trades = await db.scalar(
        select(func.count(Trade.id)).where(Trade.user_id == user_id, Trade.status == TradeStatus.pending)
    )
    pending_withdrawals = await db.scalar(
        select(func.count(Withdrawal.id))
        .where(Withdrawal.user_id == user_id, Withdrawal.status == WithdrawalStatus.pending)
    )
    if pending_trades or pending_withdrawals or Decimal(wallet.locked_balance or 0) > 0:
        await db.rollback()
        raise ValidationError("Cannot sync balance while trades or withdrawals are pending")
    wallet.balance = lamports_to_sol(lamports)
    await db.commit()
    await db.refresh(wallet)
    logger.info("Synced wallet %s balance: %s SOL", wallet.public_key, wallet.balance)
    return wallet


async def get_token_balances(db: AsyncSession, user_id: int, chain: SolanaRpcClient) -> list[dict]:
    wallet = await get_user_wallet(db, user_id)
    return await chain.get_token_accounts_by_owner(wallet.public_key)


def _transferred_lamports(tx: dict, destination: str) -> int:
    instructions = tx.get("transaction", {}).get("message", {}).get("instructions", [])
    total = 0
    for ix in instructions:
        parsed = ix.get("parsed")
        if ix.get("program") != "system" or not isinstance(parsed, dict):
            continue
        info = parsed.get("info", {})
        if parsed.get("type") == "transfer" and info.get("destination") == destination:
            total += int(info.get("lamports", 0))
    return total


async def verify_deposit(db: AsyncSession, user_id: int, tx_hash: str, chain: SolanaRpcClient) -> Deposit:
    """Credit a finalized SOL transfer into the user's wallet, once per transaction."""
    existing = await db.scalar(select(Deposit).where(Deposit.transaction_hash == tx_hash))
    if existing:
        raise ValidationError("Transaction already credited")
    wallet = await get_user_wallet(db, user_id)

    tx = await chain.get_transaction(tx_hash)
    if not tx:
        raise NotFoundError(f"Transaction {tx_hash} not found or not finalized")
    if (tx.get("meta") or {}).get("err") is not None:
        raise ValidationError(f"Transaction {tx_hash} failed on-chain")
    lamports = _transferred_lamports(tx, wallet.public_key)
    if lamports <= 0:
        raise ValidationError("Transaction does not transfer SOL to this wallet")

    amount = lamports_to_sol(lamports)
    wallet = await ledger.get_wallet(db, user_id, lock=True)
    wallet.balance = Decimal(wallet.balance) + amount
    deposit = Deposit(user_id=user_id, amount=amount, transaction_hash=tx_hash)
    db.add(deposit)
    try:
        await db.commit()
    except IntegrityError as e:
        # a concurrent verify of the same transaction won the unique constraint
        await db.rollback()
        raise ValidationError("Transaction already credited") from e
    await db.refresh(deposit)
    logger.info("Deposit %s credited %s SOL to user %s", tx_hash, amount, user_id)
    return deposit


async def request_withdrawal(
    db: AsyncSession, user_id: int, to_address: str, amount: Decimal, chain: SolanaRpcClient,
) -> Withdrawal:
    """Sign and submit a SOL transfer out of the custodial wallet.

    The wallet is debited when the withdrawal is recorded; a rejected
    submission refunds it immediately, a later on-chain failure is refunded by
    the reconciler.
    """
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be positive")
    if not is_valid_address(to_address):
        raise ValidationError(f"Invalid destination address: {to_address}")
    wallet = await get_user_wallet(db, user_id)
    if to_address == wallet.public_key:
        raise ValidationError("Cannot withdraw to the same wallet")
    needed = amount + settings.NETWORK_FEE_SOL
    if ledger.available_balance(wallet) < needed:
        raise InsufficientBalance(f"Insufficient SOL balance: available {ledger.available_balance(wallet)}")

    blockhash = await chain.get_latest_blockhash()
    unsigned = build_sol_transfer(wallet.public_key, to_address, sol_to_lamports(amount), blockhash)
    signature, signed = sign_transaction(unsigned, load_keypair(wallet))

    wallet = await ledger.get_wallet(db, user_id, lock=True)
    if ledger.available_balance(wallet) < needed:
        raise InsufficientBalance(f"Insufficient SOL balance: available {ledger.available_balance(wallet)}")
    wallet.balance = Decimal(wallet.balance) - amount
    withdrawal = Withdrawal(
        user_id=user_id, amount=amount, to_address=to_address,
        status=WithdrawalStatus.pending, transaction_hash=signature,
    )
    db.add(withdrawal)
    await db.commit()

    try:
        await chain.send_transaction(signed)
    except TradingError as e:
        wallet = await ledger.get_wallet(db, user_id, lock=True)
        wallet.balance = Decimal(wallet.balance) + amount
        withdrawal.status = WithdrawalStatus.failed
        withdrawal.error = e.message[:500]
        withdrawal.processed_at = datetime.now(timezone.utc)
        await db.commit()
        logger.warning("Withdrawal %s rejected and refunded: %s", withdrawal.id, e.message)
        raise

    await db.refresh(withdrawal)
    logger.info("Withdrawal %s submitted: %s SOL to %s (tx %s)", withdrawal.id, amount, to_address, signature)
    return withdrawal


async def list_withdrawals(db: AsyncSession, user_id: int, limit: int = 50) -> list[Withdrawal]:
    return list(await db.scalars(
        select(Withdrawal).where(Withdrawal.user_id == user_id)
        .order_by(Withdrawal.id.desc()).limit(limit)
    ))


async def fund_testnet_wallet(db: AsyncSession, user_id: int, sol: Decimal, chain: SolanaRpcClient) -> str:
    """Request a devnet/testnet airdrop; the balance lands on the next sync."""
    if settings.is_mainnet:
        raise ValidationError("Airdrops are not available on mainnet")
    if sol is None or sol <= 0 or sol > MAX_AIRDROP_SOL:
        raise ValidationError(f"Airdrop amount must be between 0 and {MAX_AIRDROP_SOL} SOL")
    wallet = await get_user_wallet(db, user_id)
    signature = await chain.request_airdrop(wallet.public_key, sol_to_lamports(sol))
    logger.info("Requested %s SOL airdrop for %s (tx %s)", sol, wallet.public_key, signature)
    return signature
