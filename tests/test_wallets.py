import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock, patch
from solders.keypair import Keypair
from sqlalchemy import select
from memeswap.core.exceptions import (
    ChainExecutionError, InsufficientBalance, NotFoundError, ValidationError,
)
from memeswap.models.trade import TradeStatus, TradeType
from memeswap.models.transfer import Deposit, Withdrawal, WithdrawalStatus
from memeswap.services import ledger, wallets

BLOCKHASH = "11111111111111111111111111111111"


def _chain():
    chain = MagicMock()
    chain.get_balance = AsyncMock(return_value=3_250_000_000)
    chain.get_latest_blockhash = AsyncMock(return_value=BLOCKHASH)
    chain.send_transaction = AsyncMock(return_value="sent")
    chain.request_airdrop = AsyncMock(return_value="airdrop-sig")
    chain.get_token_accounts_by_owner = AsyncMock(return_value=[])
    return chain


def _transfer_tx(destination: str, lamports: int, err=None):
    return {
        "meta": {"err": err},
        "transaction": {"message": {"instructions": [
            {"program": "system", "parsed": {"type": "transfer", "info": {
                "source": "someone", "destination": destination, "lamports": lamports,
            }}},
            {"program": "spl-memo", "parsed": "hello"},
        ]}},
    }


@pytest.mark.asyncio
async def test_create_wallet_stores_only_encrypted_key(factory, db):
    user = await factory.user()
    wallet = await wallets.create_wallet(db, user.id)
    assert wallet.balance == 0
    assert str(wallets.load_keypair(wallet).pubkey()) == wallet.public_key

    with pytest.raises(ValidationError):
        await wallets.create_wallet(db, user.id)


@pytest.mark.asyncio
async def test_sync_balance(factory, db):
    user = await factory.user()
    await factory.wallet(user, balance="0")
    wallet = await wallets.sync_balance(db, user.id, _chain())
    assert float(wallet.balance) == pytest.approx(3.25)


@pytest.mark.asyncio
async def test_sync_refused_while_trade_pending(factory, db, session_factory):
    user = await factory.user()
    await factory.wallet(user, balance="5")
    _, bonk = await factory.coins()
    trade = await factory.trade(user, TradeType.buy, bonk.id, "100", "0.01", fee="0.01")
    await ledger.reserve_funds(db, trade)
    await db.commit()

    with pytest.raises(ValidationError):
        await wallets.sync_balance(db, user.id, _chain())

    async with session_factory() as s:
        w = await ledger.get_wallet(s, user.id)
        assert float(w.balance) == pytest.approx(5)


@pytest.mark.asyncio
async def test_sync_refused_while_withdrawal_pending(factory, db):
    user = await factory.user()
    await factory.wallet(user, balance="5")
    db.add(Withdrawal(user_id=user.id, amount=Decimal("1"), to_address=str(Keypair().pubkey()),
                      status=WithdrawalStatus.pending))
    await db.commit()

    with pytest.raises(ValidationError):
        await wallets.sync_balance(db, user.id, _chain())


@pytest.mark.asyncio
async def test_missing_wallet(factory, db):
    user = await factory.user()
    with pytest.raises(NotFoundError):
        await wallets.sync_balance(db, user.id, _chain())


@pytest.mark.asyncio
async def test_deposit_credited_once(factory, db, session_factory):
    user = await factory.user()
    wallet = await factory.wallet(user, balance="1")
    chain = _chain()
    chain.get_transaction = AsyncMock(return_value=_transfer_tx(wallet.public_key, 500_000_000))

    deposit = await wallets.verify_deposit(db, user.id, "dep-sig", chain)
    assert float(deposit.amount) == pytest.approx(0.5)
    with pytest.raises(ValidationError):
        await wallets.verify_deposit(db, user.id, "dep-sig", chain)

    async with session_factory() as s:
        w = await ledger.get_wallet(s, user.id)
        assert float(w.balance) == pytest.approx(1.5)
        assert len((await s.scalars(select(Deposit))).all()) == 1


@pytest.mark.asyncio
async def test_concurrent_deposit_credit_hits_unique_hash(factory, db, session_factory):
    user = await factory.user()
    wallet = await factory.wallet(user, balance="1")
    chain = _chain()

    async def racing_credit(tx_hash):
        # another verify of the same transaction lands between the check and the insert
        db.add(Deposit(user_id=user.id, amount=Decimal("0.5"), transaction_hash=tx_hash))
        return _transfer_tx(wallet.public_key, 500_000_000)

    chain.get_transaction = AsyncMock(side_effect=racing_credit)
    with pytest.raises(ValidationError, match="already credited"):
        await wallets.verify_deposit(db, user.id, "dep-sig", chain)

    async with session_factory() as s:
        w = await ledger.get_wallet(s, user.id)
        assert float(w.balance) == pytest.approx(1)


@pytest.mark.asyncio
@pytest.mark.parametrize("tx", [
    None,
    _transfer_tx("someone-else", 500_000_000),
    _transfer_tx("__wallet__", 500_000_000, err={"InstructionError": [0, "InsufficientFunds"]}),
])
async def test_deposit_rejected(factory, db, tx):
    user = await factory.user()
    wallet = await factory.wallet(user, balance="1")
    if tx is not None:
        ix = tx["transaction"]["message"]["instructions"][0]["parsed"]["info"]
        if ix["destination"] == "__wallet__":
            ix["destination"] = wallet.public_key
    chain = _chain()
    chain.get_transaction = AsyncMock(return_value=tx)
    with pytest.raises((ValidationError, NotFoundError)):
        await wallets.verify_deposit(db, user.id, "bad-sig", chain)


@pytest.mark.asyncio
async def test_withdrawal_debits_and_submits(factory, db, session_factory):
    user = await factory.user()
    await factory.wallet(user, balance="2")
    chain = _chain()
    to = str(Keypair().pubkey())

    withdrawal = await wallets.request_withdrawal(db, user.id, to, Decimal("1.5"), chain)
    assert withdrawal.status == WithdrawalStatus.pending
    assert withdrawal.transaction_hash
    chain.send_transaction.assert_awaited_once()

    async with session_factory() as s:
        w = await ledger.get_wallet(s, user.id)
        assert float(w.balance) == pytest.approx(0.5)


@pytest.mark.asyncio
async def test_withdrawal_respects_locked_funds(factory, db):
    user = await factory.user()
    wallet = await factory.wallet(user, balance="2")
    wallet.locked_balance = Decimal("1")
    await db.commit()
    chain = _chain()
    with pytest.raises(InsufficientBalance):
        await wallets.request_withdrawal(db, user.id, str(Keypair().pubkey()), Decimal("1.5"), chain)
    chain.send_transaction.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejected_withdrawal_is_refunded(factory, db, session_factory):
    user = await factory.user()
    await factory.wallet(user, balance="2")
    chain = _chain()
    chain.send_transaction = AsyncMock(side_effect=ChainExecutionError("Transaction simulation failed"))

    with pytest.raises(ChainExecutionError):
        await wallets.request_withdrawal(db, user.id, str(Keypair().pubkey()), Decimal("1"), chain)

    async with session_factory() as s:
        w = await ledger.get_wallet(s, user.id)
        assert float(w.balance) == pytest.approx(2)
        row = await s.scalar(select(Withdrawal))
        assert row.status == WithdrawalStatus.failed


@pytest.mark.asyncio
async def test_withdrawal_input_validation(factory, db):
    user = await factory.user()
    wallet = await factory.wallet(user, balance="2")
    chain = _chain()
    with pytest.raises(ValidationError):
        await wallets.request_withdrawal(db, user.id, "nope", Decimal("1"), chain)
    with pytest.raises(ValidationError):
        await wallets.request_withdrawal(db, user.id, wallet.public_key, Decimal("1"), chain)
    with pytest.raises(ValidationError):
        await wallets.request_withdrawal(db, user.id, str(Keypair().pubkey()), Decimal("0"), chain)


@pytest.mark.asyncio
async def test_airdrop_on_devnet_only(factory, db):
    user = await factory.user()
    await factory.wallet(user)
    chain = _chain()
    assert await wallets.fund_testnet_wallet(db, user.id, Decimal("1"), chain) == "airdrop-sig"
    chain.request_airdrop.assert_awaited_once()
    assert chain.request_airdrop.call_args.args[1] == 1_000_000_000

    with pytest.raises(ValidationError):
        await wallets.fund_testnet_wallet(db, user.id, Decimal("50"), chain)

    with patch("memeswap.services.wallets.settings") as mock_settings:
        mock_settings.is_mainnet = True
        with pytest.raises(ValidationError):
            await wallets.fund_testnet_wallet(db, user.id, Decimal("1"), chain)
