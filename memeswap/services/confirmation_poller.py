"""Polls submitted transactions until the chain reports a final state.

A trade only leaves ``pending`` through this module (or the reconciler, which
reuses :meth:`ConfirmationPoller.check_once`): an on-chain error fails the
trade and releases its reservation, finalization settles it into the ledger.
A finalized trade is never failed: if settling it would overdraw the ledger it
stays ``pending`` with the shortfall recorded until a later check settles it.
"""

import asyncio
import enum
import logging
from typing import Awaitable, Callable, Iterator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from memeswap.config import settings
from memeswap.core.exceptions import (
    ConfirmationTimeout, InsufficientBalance, NotFoundError, UpstreamError, chain_error,
)
from memeswap.database import AsyncSessionLocal
from memeswap.models.trade import Trade, TradeStatus
from memeswap.services import ledger
from memeswap.services.solana_rpc import SignatureStatus, SolanaRpcClient

logger = logging.getLogger(__name__)


class PollOutcome(str, enum.Enum):
    completed = "completed"
    failed = "failed"
    timeout = "timeout"
    # final on-chain but the ledger could not absorb it; left pending for review
    unsettled = "unsettled"


def backoff_delays(initial: float, interval: float, factor: float, cap: float, attempts: int) -> Iterator[float]:
    """Sleep before each check: ``initial`` first, then ``interval * factor**n`` capped at ``cap``."""
    for attempt in range(attempts):
        if attempt == 0:
            yield initial
        else:
            yield min(interval * factor ** (attempt - 1), cap)


class ConfirmationPoller:
    def __init__(
        self,
        chain: SolanaRpcClient,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        initial_delay: Optional[float] = None,
        interval: Optional[float] = None,
        backoff_factor: Optional[float] = None,
        max_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.chain = chain
        self.session_factory = session_factory
        self.initial_delay = settings.POLL_INITIAL_DELAY_SEC if initial_delay is None else initial_delay
        self.interval = settings.POLL_INTERVAL_SEC if interval is None else interval
        self.backoff_factor = settings.POLL_BACKOFF_FACTOR if backoff_factor is None else backoff_factor
        self.max_interval = settings.POLL_MAX_INTERVAL_SEC if max_interval is None else max_interval
        self.max_attempts = settings.POLL_MAX_ATTEMPTS if max_attempts is None else max_attempts
        self._sleep = sleep

    def delays(self) -> list[float]:
        return list(backoff_delays(self.initial_delay, self.interval, self.backoff_factor,
                                   self.max_interval, self.max_attempts))

    async def poll_until_final(self, tx_hash: str, raise_on_timeout: bool = False) -> PollOutcome:
        for attempt, delay in enumerate(self.delays(), start=1):
            if delay > 0:
                await self._sleep(delay)
            try:
                outcome = await self.check_once(tx_hash)
            except UpstreamError as e:
                logger.warning("Poll %d/%d for %s failed: %s", attempt, self.max_attempts, tx_hash, e.message)
                continue
            if outcome is not None:
                return outcome

        logger.warning("Transaction %s not final after %d checks; left pending", tx_hash, self.max_attempts)
        if raise_on_timeout:
            raise ConfirmationTimeout(f"Transaction {tx_hash} not confirmed after {self.max_attempts} checks")
        return PollOutcome.timeout

    async def check_once(self, tx_hash: str) -> Optional[PollOutcome]:
        """Run a single status check; returns the terminal outcome or ``None`` while undecided."""
        status = await self.chain.get_signature_status(tx_hash)
        if status is None:
            logger.debug("Transaction %s not yet seen", tx_hash)
            return None
        if status.failed:
            return await self._fail(tx_hash, chain_error(status.err).message)
        if status.finalized:
            return await self._settle(tx_hash)
        await self._record_progress(tx_hash, status)
        return None

    async def _trade_id(self, db, tx_hash: str) -> int:
        trade_id = await db.scalar(select(Trade.id).where(Trade.transaction_hash == tx_hash))
        if trade_id is None:
            raise NotFoundError(f"No trade for transaction {tx_hash}")
        return trade_id

    async def _fail(self, tx_hash: str, error: str) -> PollOutcome:
        async with self.session_factory() as db:
            async with db.begin():
                trade_id = await self._trade_id(db, tx_hash)
                if await ledger.fail_trade(db, trade_id, error) is None:
                    return self._terminal_outcome(await db.get(Trade, trade_id))
        return PollOutcome.failed

    @staticmethod
    def _terminal_outcome(trade: Trade) -> PollOutcome:
        return PollOutcome.completed if trade.status == TradeStatus.completed else PollOutcome.failed

    async def _settle(self, tx_hash: str) -> PollOutcome:
        async with self.session_factory() as db:
            try:
                async with db.begin():
                    trade_id = await self._trade_id(db, tx_hash)
                    settled = await ledger.settle_trade(db, trade_id)
                    if settled is None:
                        return self._terminal_outcome(await db.get(Trade, trade_id))
            except InsufficientBalance as e:
                return await self._hold(tx_hash, e.message)
        return PollOutcome.completed

    async def _hold(self, tx_hash: str, error: str) -> PollOutcome:
        """Record a settlement shortfall on a finalized trade without failing it."""
        async with self.session_factory() as db:
            async with db.begin():
                trade = await ledger.lock_trade(db, await self._trade_id(db, tx_hash))
                if trade.is_terminal:
                    return self._terminal_outcome(trade)
                trade.chain_status = "finalized"
                trade.error = f"Settlement blocked: {error}"[:500]
        logger.error("Trade %s finalized on-chain but cannot be settled: %s (tx %s)", trade.id, error, tx_hash)
        return PollOutcome.unsettled

    async def _record_progress(self, tx_hash: str, status: SignatureStatus) -> None:
        async with self.session_factory() as db:
            async with db.begin():
                trade = await ledger.lock_trade(db, await self._trade_id(db, tx_hash))
                if trade.is_terminal:
                    return
                trade.chain_status = status.confirmation_status
                trade.confirmations = status.confirmations or 0
        logger.info("Transaction %s %s (%s confirmations)", tx_hash,
                    status.confirmation_status, status.confirmations)
