"""Periodic sweep over transfers whose poller gave up or never ran.

Trades left ``pending`` past the poll budget get one more status check; once
the blockhash they were signed against has long expired and the cluster still
has no record of them, they are failed and their reservation released.
Withdrawals are finalized the same way.
"""

import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from memeswap.config import settings
from memeswap.core.exceptions import TradingError, chain_error
from memeswap.database import AsyncSessionLocal
from memeswap.models.trade import Trade, TradeStatus
from memeswap.models.transfer import Withdrawal, WithdrawalStatus
from memeswap.services import ledger
from memeswap.services.confirmation_poller import ConfirmationPoller, PollOutcome
from memeswap.services.solana_rpc import SolanaRpcClient

logger = logging.getLogger(__name__)


def _as_utc(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def is_expired(created_at: Optional[datetime], now: datetime) -> bool:
    if created_at is None:
        return False
    return now - _as_utc(created_at) > timedelta(seconds=settings.PENDING_EXPIRY_SEC)


async def reconcile_pending_trades(
    poller: ConfirmationPoller,
    session_factory: async_sessionmaker = AsyncSessionLocal,
    now: Optional[datetime] = None,
) -> dict:
    now = now or datetime.now(timezone.utc)
    cutoff = now - timedelta(seconds=settings.RECONCILE_AFTER_SEC)
    async with session_factory() as db:
        stale = list(await db.scalars(
            select(Trade).where(Trade.status == TradeStatus.pending, Trade.created_at < cutoff)
            .order_by(Trade.id)
        ))

    summary = {"checked": 0, "resolved": 0, "expired": 0, "unsettled": 0}
    for trade in stale:
        summary["checked"] += 1
        try:
            outcome = await poller.check_once(trade.transaction_hash)
        except TradingError as e:
            logger.warning("Reconcile check for trade %s failed: %s", trade.id, e.message)
            continue
        if outcome == PollOutcome.unsettled:
            summary["unsettled"] += 1
            continue
        if outcome is not None:
            summary["resolved"] += 1
            logger.info("Reconciled trade %s (tx %s): %s", trade.id, trade.transaction_hash, outcome.value)
            continue
        if await _expire_trade(session_factory, trade.id, now):
            summary["expired"] += 1

    if stale:
        logger.info("Pending trade sweep: %s", summary)
    return summary


async def _expire_trade(session_factory: async_sessionmaker, trade_id: int, now: datetime) -> bool:
    async with session_factory() as db:
        async with db.begin():
            trade = await ledger.lock_trade(db, trade_id)
            # a trade the cluster has seen may still finalize
            if trade is None or trade.is_terminal or trade.chain_status is not None:
                return False
            if not is_expired(trade.created_at, now):
                return False
            await ledger.fail_trade(db, trade_id, "expired: transaction never reached the cluster")
    return True


async def reconcile_withdrawals(
    chain: SolanaRpcClient,
    session_factory: async_sessionmaker = AsyncSessionLocal,
    now: Optional[datetime] = None,
) -> dict:
    """Complete finalized withdrawals; refund failed or expired ones."""
    now = now or datetime.now(timezone.utc)
    async with session_factory() as db:
        pending = list(await db.scalars(
            select(Withdrawal).where(Withdrawal.status == WithdrawalStatus.pending).order_by(Withdrawal.id)
        ))

    summary = {"completed": 0, "failed": 0}
    for withdrawal in pending:
        error = None
        if withdrawal.transaction_hash:
            try:
                status = await chain.get_signature_status(withdrawal.transaction_hash)
            except TradingError as e:
                logger.warning("Withdrawal %s status check failed: %s", withdrawal.id, e.message)
                continue
            if status is not None and status.failed:
                error = chain_error(status.err).message
            elif status is not None and status.finalized:
                await _finish_withdrawal(session_factory, withdrawal.id, now, None)
                summary["completed"] += 1
                continue
            elif status is not None or not is_expired(withdrawal.created_at, now):
                continue
        elif not is_expired(withdrawal.created_at, now):
            continue
        await _finish_withdrawal(session_factory, withdrawal.id, now, error or "expired")
        summary["failed"] += 1
    return summary


async def _finish_withdrawal(session_factory: async_sessionmaker, withdrawal_id: int,
                             now: datetime, error: Optional[str]) -> None:
    async with session_factory() as db:
        async with db.begin():
            withdrawal = await db.scalar(
                select(Withdrawal).where(Withdrawal.id == withdrawal_id)
                .with_for_update().execution_options(populate_existing=True)
            )
            if withdrawal is None or withdrawal.status != WithdrawalStatus.pending:
                return
            withdrawal.processed_at = now
            if error is None:
                withdrawal.status = WithdrawalStatus.completed
                logger.info("Withdrawal %s completed (tx %s)", withdrawal.id, withdrawal.transaction_hash)
                return
            wallet = await ledger.get_wallet(db, withdrawal.user_id, lock=True)
            if wallet is not None:
                wallet.balance = Decimal(wallet.balance) + Decimal(withdrawal.amount)
            withdrawal.status = WithdrawalStatus.failed
            withdrawal.error = error[:500]
            logger.warning("Withdrawal %s failed and refunded: %s", withdrawal.id, error)


async def reconcile_job(poller: Optional[ConfirmationPoller] = None) -> None:
    """Scheduler entry point: one sweep over pending trades and withdrawals."""
    own_chain = poller is None
    poller = poller or ConfirmationPoller(SolanaRpcClient())
    try:
        await reconcile_pending_trades(poller)
        await reconcile_withdrawals(poller.chain)
    except TradingError as e:
        logger.error("Reconciliation sweep aborted: %s", e.message)
    finally:
        if own_chain:
            await poller.chain.close()
