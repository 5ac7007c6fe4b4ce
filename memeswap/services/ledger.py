"""Ledger mutations: fund reservation, settlement and failure of trades.

All functions here expect to run inside a caller-owned transaction and take
row locks (``SELECT ... FOR UPDATE``) on every wallet, holding and trade row
they modify, so concurrent trades of one user serialize while trades of
different users proceed independently.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from memeswap.config import settings
from memeswap.core.exceptions import InsufficientBalance, NotFoundError
from memeswap.models.portfolio import PortfolioAsset
from memeswap.models.trade import Trade, TradeStatus, TradeType
from memeswap.models.wallet import Wallet

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def weighted_average(old_amount: Decimal, old_avg: Decimal, add_amount: Decimal, add_price: Decimal) -> Decimal:
    new_amount = old_amount + add_amount
    if new_amount <= 0:
        return ZERO
    return (old_amount * old_avg + add_amount * add_price) / new_amount


def realized_pnl(amount: Decimal, price: Decimal, cost_basis: Decimal) -> Decimal:
    return amount * (price - cost_basis)


def trade_value(trade: Trade) -> Decimal:
    """SOL value of the coin leg: ``amount * price``."""
    return Decimal(trade.amount) * Decimal(trade.price)


def wallet_reservation(trade: Trade) -> Decimal:
    """SOL locked in the wallet while ``trade`` is pending."""
    if trade.type == TradeType.buy:
        return trade_value(trade) + Decimal(trade.fee)
    # sell fees come out of the proceeds, swap fees out of the input coin
    return ZERO


def holding_reservation(trade: Trade) -> tuple[Optional[str], Decimal]:
    """``(coin_id, amount)`` locked in a holding while ``trade`` is pending."""
    if trade.type == TradeType.sell:
        return trade.coin_id, Decimal(trade.amount)
    if trade.type == TradeType.swap:
        return trade.from_coin_id, Decimal(trade.input_amount)
    return None, ZERO


async def get_wallet(db: AsyncSession, user_id: int, lock: bool = False) -> Optional[Wallet]:
    stmt = select(Wallet).where(Wallet.user_id == user_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return await db.scalar(stmt)


async def get_holding(db: AsyncSession, user_id: int, coin_id: str, lock: bool = False) -> Optional[PortfolioAsset]:
    stmt = select(PortfolioAsset).where(PortfolioAsset.user_id == user_id, PortfolioAsset.coin_id == coin_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return await db.scalar(stmt)


async def lock_trade(db: AsyncSession, trade_id: int) -> Optional[Trade]:
    return await db.scalar(
        select(Trade).where(Trade.id == trade_id)
        .with_for_update().execution_options(populate_existing=True)
    )


def available_balance(wallet: Wallet) -> Decimal:
    return Decimal(wallet.balance or 0) - Decimal(wallet.locked_balance or 0)


def available_amount(holding: Optional[PortfolioAsset]) -> Decimal:
    if holding is None:
        return ZERO
    return Decimal(holding.amount or 0) - Decimal(holding.locked_amount or 0)


def check_balances(wallet: Wallet, holding: Optional[PortfolioAsset], trade: Trade) -> None:
    """Raise InsufficientBalance unless ``trade`` can be funded right now."""
    needed_sol = wallet_reservation(trade) + settings.NETWORK_FEE_SOL
    if available_balance(wallet) < needed_sol:
        raise InsufficientBalance(
            f"Insufficient SOL balance: available {available_balance(wallet)}, required {needed_sol}"
        )
    coin_id, needed_amount = holding_reservation(trade)
    if coin_id is not None and available_amount(holding) < needed_amount:
        raise InsufficientBalance(
            f"Insufficient {coin_id} holding: available {available_amount(holding)}, required {needed_amount}"
        )


async def reserve_funds(db: AsyncSession, trade: Trade) -> None:
    """Lock the user's rows, re-check balances and move funds into locked columns."""
    wallet = await get_wallet(db, trade.user_id, lock=True)
    if wallet is None:
        raise NotFoundError("Wallet not found")
    coin_id, amount = holding_reservation(trade)
    holding = await get_holding(db, trade.user_id, coin_id, lock=True) if coin_id else None

    check_balances(wallet, holding, trade)

    wallet.locked_balance = Decimal(wallet.locked_balance or 0) + wallet_reservation(trade)
    if holding is not None:
        holding.locked_amount = Decimal(holding.locked_amount or 0) + amount


async def release_reservation(db: AsyncSession, trade: Trade) -> None:
    wallet = await get_wallet(db, trade.user_id, lock=True)
    if wallet is not None:
        wallet.locked_balance = max(Decimal(wallet.locked_balance or 0) - wallet_reservation(trade), ZERO)
    coin_id, amount = holding_reservation(trade)
    if coin_id:
        holding = await get_holding(db, trade.user_id, coin_id, lock=True)
        if holding is not None:
            holding.locked_amount = max(Decimal(holding.locked_amount or 0) - amount, ZERO)


def apply_buy(holding: PortfolioAsset, amount: Decimal, price: Decimal) -> None:
    old_amount = Decimal(holding.amount or 0)
    old_avg = Decimal(holding.average_buy_price or 0)
    holding.average_buy_price = weighted_average(old_amount, old_avg, amount, price)
    holding.amount = old_amount + amount


def apply_sell(holding: Optional[PortfolioAsset], amount: Decimal) -> Decimal:
    """Reduce ``holding`` by ``amount`` and return its unchanged average buy price."""
    held = Decimal(holding.amount or 0) if holding is not None else ZERO
    if holding is None or held < amount:
        raise InsufficientBalance(f"Cannot sell {amount}: only {held} held")
    holding.amount = held - amount
    return Decimal(holding.average_buy_price or 0)


async def _buy_into(db: AsyncSession, user_id: int, coin_id: str, amount: Decimal, price: Decimal) -> None:
    holding = await get_holding(db, user_id, coin_id, lock=True)
    if holding is None:
        holding = PortfolioAsset(
            user_id=user_id, coin_id=coin_id,
            amount=ZERO, locked_amount=ZERO, average_buy_price=ZERO,
        )
        db.add(holding)
    apply_buy(holding, amount, price)


async def settle_trade(db: AsyncSession, trade_id: int) -> Optional[Trade]:
    """Apply a finalized trade to the ledger.

    Returns the settled trade, or ``None`` when the trade is already terminal.
    The caller commits; any exception must roll the whole settlement back.
    """
    trade = await lock_trade(db, trade_id)
    if trade is None:
        raise NotFoundError(f"Trade {trade_id} not found")
    if trade.is_terminal:
        logger.info("Trade %s already %s, skipping settlement", trade.id, trade.status.value)
        return None

    await release_reservation(db, trade)

    wallet = await get_wallet(db, trade.user_id, lock=True)
    if wallet is None:
        raise NotFoundError("Wallet not found")
    amount = Decimal(trade.amount)
    price = Decimal(trade.price)
    fee = Decimal(trade.fee)

    if trade.type == TradeType.buy:
        await _buy_into(db, trade.user_id, trade.coin_id, amount, price)
        wallet.balance = Decimal(wallet.balance) - (amount * price + fee)
    elif trade.type == TradeType.sell:
        holding = await get_holding(db, trade.user_id, trade.coin_id, lock=True)
        trade.cost_basis = apply_sell(holding, amount)
        wallet.balance = Decimal(wallet.balance) + (amount * price - fee)
    else:
        source = await get_holding(db, trade.user_id, trade.from_coin_id, lock=True)
        trade.cost_basis = apply_sell(source, Decimal(trade.input_amount))
        await _buy_into(db, trade.user_id, trade.coin_id, amount, price)

    if Decimal(wallet.balance) < 0:
        raise InsufficientBalance(f"Settlement of trade {trade.id} would overdraw the wallet")

    trade.status = TradeStatus.completed
    trade.chain_status = "finalized"
    trade.completed_at = datetime.now(timezone.utc)
    trade.error = None
    logger.info("Trade %s settled: %s %s %s @ %s fee %s (tx %s)",
                trade.id, trade.type.value, amount, trade.coin_id, price, fee, trade.transaction_hash)
    return trade


async def fail_trade(db: AsyncSession, trade_id: int, error: str) -> Optional[Trade]:
    """Mark a pending trade failed and release its reservation; terminal trades are left alone."""
    trade = await lock_trade(db, trade_id)
    if trade is None:
        raise NotFoundError(f"Trade {trade_id} not found")
    if trade.is_terminal:
        return None
    await release_reservation(db, trade)
    trade.status = TradeStatus.failed
    trade.error = error[:500]
    trade.completed_at = datetime.now(timezone.utc)
    logger.warning("Trade %s failed: %s (tx %s)", trade.id, error, trade.transaction_hash)
    return trade
