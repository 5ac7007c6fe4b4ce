import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from solders.keypair import Keypair
from sqlalchemy import func, select
from memeswap.core.exceptions import ChainErrorKind, ChainExecutionError, InsufficientBalance, NotFoundError, ValidationError
from memeswap.models.coin import SOL_MINT
from memeswap.models.trade import Trade, TradeStatus, TradeType
from memeswap.services import ledger
from memeswap.services.confirmation_poller import PollOutcome
from memeswap.config import settings
from memeswap.services.quote import Quote
from memeswap.services.trade_executor import (
    TradeExecutor, classify, get_trade, get_trade_by_hash, list_trades, settlement_terms,
)
from memeswap.services.transactions import associated_token_address, build_sol_transfer
from tests.conftest import BONK, WIF

BLOCKHASH = "11111111111111111111111111111111"
PRICES = {SOL_MINT: Decimal("100"), BONK: Decimal("0.5")}


def _executor(wallet, out_amount: str, prices=PRICES, **route):
    jupiter = MagicMock()
    jupiter.get_prices = AsyncMock(return_value=prices)
    jupiter.get_quote = AsyncMock(return_value={"outAmount": out_amount, "inAmount": "0", **route})
    unsigned = build_sol_transfer(wallet.public_key, str(Keypair().pubkey()), 1, BLOCKHASH)
    jupiter.create_swap_transaction = AsyncMock(return_value=unsigned)
    chain = MagicMock()
    chain.send_transaction = AsyncMock(return_value="sent")
    poller = MagicMock()
    poller.poll_until_final = AsyncMock(return_value=PollOutcome.completed)
    return TradeExecutor(jupiter, chain, poller), jupiter, chain, poller


def test_classify():
    assert classify(SOL_MINT, BONK) == TradeType.buy
    assert classify(BONK, SOL_MINT) == TradeType.sell
    assert classify(BONK, WIF) == TradeType.swap


@pytest.mark.asyncio
async def test_buy_reserves_and_hands_off_to_poller(factory, db, session_factory):
    await factory.coins()
    user = await factory.user()
    wallet = await factory.wallet(user, balance="10")
    # 400 BONK at 5 decimals
    executor, jupiter, chain, poller = _executor(wallet, "40000000")

    trade = await executor.submit_trade(db, user.id, SOL_MINT, BONK, Decimal("2"), 50)
    await executor.wait_for_polls()

    assert trade.status == TradeStatus.pending
    assert trade.type == TradeType.buy
    assert trade.coin_id == BONK
    assert trade.amount == Decimal("400")
    # the fee comes out of the 2 SOL input
    assert trade.fee == Decimal("0.002")
    assert trade.price == Decimal("0.004995")
    assert trade.slippage_bps == 50
    jupiter.get_quote.assert_awaited_once_with(SOL_MINT, BONK, 2_000_000_000, 50, 10)
    fee_account = jupiter.create_swap_transaction.call_args.args[2]
    assert fee_account == associated_token_address(settings.PLATFORM_FEE_ACCOUNT, SOL_MINT)
    chain.send_transaction.assert_awaited_once()
    poller.poll_until_final.assert_awaited_once_with(trade.transaction_hash)

    async with session_factory() as s:
        w = await ledger.get_wallet(s, user.id)
        assert float(w.balance) == pytest.approx(10)
        assert float(w.locked_balance) == pytest.approx(2)


@pytest.mark.asyncio
async def test_sell_locks_holding(factory, db, session_factory):
    await factory.coins()
    user = await factory.user()
    wallet = await factory.wallet(user, balance="1")
    await factory.holding(user, BONK, amount="1000", avg="0.004")
    # 2.5 SOL received after a 0.0025 SOL platform fee
    executor, *_ = _executor(wallet, "2500000000", platformFee={"amount": "2500000", "feeBps": 10})

    trade = await executor.submit_trade(db, user.id, BONK, SOL_MINT, Decimal("500"))
    assert trade.type == TradeType.sell
    assert trade.fee == Decimal("0.0025")
    assert trade.price == Decimal("0.005005")
    # credited on settlement: exactly what the chain pays out
    assert float(trade.amount * trade.price - trade.fee) == pytest.approx(2.5)

    async with session_factory() as s:
        h = await ledger.get_holding(s, user.id, BONK)
        assert float(h.locked_amount) == pytest.approx(500)
        assert float(h.amount) == pytest.approx(1000)


@pytest.mark.asyncio
async def test_swap_pays_fee_in_input_coin(factory, db, session_factory):
    await factory.coins()
    await factory.coin(WIF, "WIF", price="2", decimals=6)
    user = await factory.user()
    wallet = await factory.wallet(user, balance="1")
    await factory.holding(user, BONK, amount="1000", avg="0.004")
    prices = {SOL_MINT: Decimal("100"), BONK: Decimal("0.5"), WIF: Decimal("2")}
    # 400 BONK (2 SOL worth) -> 1 WIF
    executor, jupiter, *_ = _executor(wallet, "1000000", prices=prices)

    trade = await executor.submit_trade(db, user.id, BONK, WIF, Decimal("400"))
    assert trade.type == TradeType.swap
    assert trade.coin_id == WIF
    assert trade.input_price == Decimal("0.005")
    assert trade.price == Decimal("2")
    assert trade.fee == Decimal("0.002")
    fee_account = jupiter.create_swap_transaction.call_args.args[2]
    assert fee_account == associated_token_address(settings.PLATFORM_FEE_ACCOUNT, BONK)

    async with session_factory() as s:
        w = await ledger.get_wallet(s, user.id)
        assert float(w.locked_balance) == 0
        h = await ledger.get_holding(s, user.id, BONK)
        assert float(h.locked_amount) == pytest.approx(400)


def test_sell_fee_derived_from_rate_when_route_omits_it():
    quote = Quote(BONK, SOL_MINT, Decimal("500"), Decimal("2.5"), Decimal("0.005"), Decimal("0"),
                  Decimal("0"), Decimal("0.5"), Decimal("100"), Decimal("0.005"), Decimal("1"))
    terms = settlement_terms(quote, Decimal("2.4975"), Decimal("0.001"))
    # gross 2.5, of which 0.1% went to the platform
    assert float(terms.fee) == pytest.approx(0.0025)
    assert float(terms.price) == pytest.approx(0.005)
    assert float(terms.amount * terms.price - terms.fee) == pytest.approx(2.4975)


@pytest.mark.asyncio
async def test_insufficient_balance_persists_nothing(factory, db, session_factory):
    await factory.coins()
    user = await factory.user()
    wallet = await factory.wallet(user, balance="1")
    executor, jupiter, chain, _ = _executor(wallet, "40000000")

    with pytest.raises(InsufficientBalance):
        await executor.submit_trade(db, user.id, SOL_MINT, BONK, Decimal("2"))

    jupiter.create_swap_transaction.assert_not_awaited()
    chain.send_transaction.assert_not_awaited()
    async with session_factory() as s:
        assert await s.scalar(select(func.count(Trade.id))) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("slippage", [-1, 5001])
async def test_slippage_out_of_range(factory, db, slippage):
    await factory.coins()
    user = await factory.user()
    wallet = await factory.wallet(user)
    executor, jupiter, _, _ = _executor(wallet, "1")
    with pytest.raises(ValidationError):
        await executor.submit_trade(db, user.id, SOL_MINT, BONK, Decimal("1"), slippage)
    jupiter.get_prices.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejected_submission_fails_trade_and_releases(factory, db, session_factory):
    await factory.coins()
    user = await factory.user()
    wallet = await factory.wallet(user, balance="10")
    executor, _, chain, poller = _executor(wallet, "40000000")
    chain.send_transaction = AsyncMock(side_effect=ChainExecutionError(
        "Transaction simulation failed: insufficient_funds", kind=ChainErrorKind.insufficient_funds,
    ))

    with pytest.raises(ChainExecutionError):
        await executor.submit_trade(db, user.id, SOL_MINT, BONK, Decimal("2"))
    poller.poll_until_final.assert_not_awaited()

    async with session_factory() as s:
        trade = await s.scalar(select(Trade))
        assert trade.status == TradeStatus.failed
        assert "insufficient_funds" in trade.error
        w = await ledger.get_wallet(s, user.id)
        assert float(w.locked_balance) == 0
        assert float(w.balance) == pytest.approx(10)


@pytest.mark.asyncio
async def test_missing_wallet(factory, db):
    await factory.coins()
    user = await factory.user()
    other = await factory.user()
    wallet = await factory.wallet(other)
    executor, *_ = _executor(wallet, "40000000")
    with pytest.raises(NotFoundError):
        await executor.submit_trade(db, user.id, SOL_MINT, BONK, Decimal("1"))


@pytest.mark.asyncio
async def test_trade_lookups_are_scoped_to_owner(factory, db):
    await factory.coins()
    alice = await factory.user()
    bob = await factory.user()
    trade = await factory.trade(alice, TradeType.buy, BONK, amount="10", price="0.1", tx_hash="sigA")

    assert (await get_trade(db, alice.id, trade.id)).id == trade.id
    with pytest.raises(NotFoundError):
        await get_trade(db, bob.id, trade.id)
    assert (await get_trade_by_hash(db, "sigA")).id == trade.id
    with pytest.raises(NotFoundError):
        await get_trade_by_hash(db, "nope")
    assert [t.id for t in await list_trades(db, alice.id)] == [trade.id]
    assert await list_trades(db, bob.id) == []
