"""Trade submission: quote, build, sign, reserve, submit, then hand off to the poller."""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from memeswap.config import settings
from memeswap.core.exceptions import NotFoundError, TradingError, UpstreamError, ValidationError
from memeswap.models.coin import SOL_MINT
from memeswap.models.trade import Trade, TradeStatus, TradeType
from memeswap.services import ledger
from memeswap.services.coins import get_coin
from memeswap.services.confirmation_poller import ConfirmationPoller
from memeswap.services.jupiter import JupiterClient
from memeswap.services.keystore import decrypt_keypair
from memeswap.services.quote import Quote, QuoteService
from memeswap.services.solana_rpc import SolanaRpcClient
from memeswap.services.transactions import platform_fee_account, sign_transaction

logger = logging.getLogger(__name__)


@dataclass
class TradeTerms:
    type: TradeType
    coin_id: str
    amount: Decimal
    input_amount: Decimal
    price: Decimal
    fee: Decimal
    input_price: Optional[Decimal] = None


def classify(from_token: str, to_token: str) -> TradeType:
    if from_token == SOL_MINT:
        return TradeType.buy
    if to_token == SOL_MINT:
        return TradeType.sell
    return TradeType.swap


def to_raw(amount: Decimal, decimals: int) -> int:
    return int((amount * (Decimal(10) ** decimals)).to_integral_value())


def from_raw(raw, decimals: int) -> Decimal:
    return Decimal(int(raw)) / (Decimal(10) ** decimals)


def charged_fee(route: dict, decimals: int) -> Optional[Decimal]:
    """Platform fee the route takes, in units of the fee mint, when Jupiter reports it."""
    platform_fee = route.get("platformFee") or {}
    if platform_fee.get("amount") is None:
        return None
    return from_raw(platform_fee["amount"], decimals)


def settlement_terms(
    quote: Quote, out_amount: Decimal, fee_rate: Decimal, fee: Optional[Decimal] = None,
) -> TradeTerms:
    """Express a routed trade in ledger terms: coin units, SOL per coin and a SOL fee.

    The platform fee is collected inside the swap, never on top of it. Buys pay
    it out of the SOL input, sells out of the SOL output (``out_amount`` is
    already net of it) and swaps out of the input coin. ``fee`` is the amount
    the route reports; without one it is derived from ``fee_rate``.
    """
    trade_type = classify(quote.from_coin_id, quote.to_coin_id)
    if trade_type == TradeType.buy:
        if fee is None:
            fee = quote.amount * fee_rate
        return TradeTerms(trade_type, quote.to_coin_id, out_amount, quote.amount,
                          price=(quote.amount - fee) / out_amount, fee=fee)
    if trade_type == TradeType.sell:
        if fee is None:
            fee = out_amount * fee_rate / (1 - fee_rate)
        return TradeTerms(trade_type, quote.from_coin_id, quote.amount, quote.amount,
                          price=(out_amount + fee) / quote.amount, fee=fee)
    if fee is None:
        fee = quote.amount * fee_rate
    # the received coin costs what was given up for it, fee included
    return TradeTerms(trade_type, quote.to_coin_id, out_amount, quote.amount,
                      price=quote.amount * quote.from_price_sol / out_amount,
                      fee=fee * quote.from_price_sol, input_price=quote.from_price_sol)


class TradeExecutor:
    def __init__(
        self,
        jupiter: JupiterClient,
        chain: SolanaRpcClient,
        poller: Optional[ConfirmationPoller] = None,
    ):
        self.jupiter = jupiter
        self.chain = chain
        self.quotes = QuoteService(jupiter)
        self.poller = poller or ConfirmationPoller(chain)
        # strong refs so background polls are not garbage collected
        self._tasks: set[asyncio.Task] = set()

    async def submit_trade(
        self,
        db: AsyncSession,
        user_id: int,
        from_token: str,
        to_token: str,
        amount: Decimal,
        slippage_bps: Optional[int] = None,
    ) -> Trade:
        """Submit a swap and return the ``pending`` trade carrying its signature.

        Nothing is persisted unless the transaction was signed and funds were
        reserved; a rejected submission leaves the trade ``failed`` with its
        reservation released.
        """
        slippage_bps = settings.DEFAULT_SLIPPAGE_BPS if slippage_bps is None else slippage_bps
        if not 0 <= slippage_bps <= settings.MAX_SLIPPAGE_BPS:
            raise ValidationError(f"Slippage must be between 0 and {settings.MAX_SLIPPAGE_BPS} bps")

        quote = await self.quotes.get_quote(db, from_token, to_token, amount)
        from_coin = await get_coin(db, from_token)
        to_coin = await get_coin(db, to_token)

        route = await self.jupiter.get_quote(
            from_token, to_token, to_raw(amount, from_coin.decimals), slippage_bps, settings.platform_fee_bps,
        )
        out_amount = from_raw(route["outAmount"], to_coin.decimals)
        if out_amount <= 0:
            raise UpstreamError(f"Route for {from_token} -> {to_token} yields nothing")
        fee_decimals = to_coin.decimals if to_token == SOL_MINT else from_coin.decimals
        terms = settlement_terms(quote, out_amount, settings.fee_rate, charged_fee(route, fee_decimals))

        wallet = await ledger.get_wallet(db, user_id)
        if wallet is None:
            raise NotFoundError("Wallet not found")
        trade = Trade(
            user_id=user_id,
            coin_id=terms.coin_id,
            from_coin_id=from_token,
            to_coin_id=to_token,
            type=terms.type,
            amount=terms.amount,
            input_amount=terms.input_amount,
            price=terms.price,
            fee=terms.fee,
            input_price=terms.input_price,
            slippage_bps=slippage_bps,
            status=TradeStatus.pending,
            confirmations=0,
        )
        coin_id, _ = ledger.holding_reservation(trade)
        holding = await ledger.get_holding(db, user_id, coin_id) if coin_id else None
        ledger.check_balances(wallet, holding, trade)

        unsigned = await self.jupiter.create_swap_transaction(
            route, wallet.public_key, platform_fee_account(from_token, to_token),
        )
        signature, signed = sign_transaction(unsigned, decrypt_keypair(wallet.encrypted_private_key))
        trade.transaction_hash = signature

        await ledger.reserve_funds(db, trade)
        db.add(trade)
        await db.commit()
        await db.refresh(trade)
        logger.info("Trade %s pending: %s %s -> %s (tx %s)",
                    trade.id, terms.type.value, from_token, to_token, signature)

        try:
            await self.chain.send_transaction(signed)
        except TradingError as e:
            await ledger.fail_trade(db, trade.id, e.message)
            await db.commit()
            await db.refresh(trade)
            raise

        self._spawn_poll(signature)
        return trade

    def _spawn_poll(self, tx_hash: str) -> None:
        task = asyncio.create_task(self._watch(tx_hash))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _watch(self, tx_hash: str) -> None:
        try:
            outcome = await self.poller.poll_until_final(tx_hash)
            logger.info("Transaction %s finished polling: %s", tx_hash, outcome.value)
        except Exception:
            logger.exception("Polling %s crashed; the reconciler will pick it up", tx_hash)

    async def wait_for_polls(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


async def get_trade(db: AsyncSession, user_id: int, trade_id: int) -> Trade:
    trade = await db.get(Trade, trade_id)
    if trade is None or trade.user_id != user_id:
        raise NotFoundError(f"Trade {trade_id} not found")
    return trade


async def list_trades(db: AsyncSession, user_id: int, limit: int = 50) -> list[Trade]:
    return list(await db.scalars(
        select(Trade).where(Trade.user_id == user_id)
        .order_by(Trade.created_at.desc(), Trade.id.desc()).limit(limit)
    ))


async def get_trade_by_hash(db: AsyncSession, tx_hash: str) -> Trade:
    trade = await db.scalar(select(Trade).where(Trade.transaction_hash == tx_hash))
    if trade is None:
        raise NotFoundError(f"No trade for transaction {tx_hash}")
    return trade
