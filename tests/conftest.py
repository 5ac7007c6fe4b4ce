import os
from datetime import datetime, timezone
from decimal import Decimal

from cryptography.fernet import Fernet
from solders.keypair import Keypair

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("KEY_ENCRYPTION_KEY", Fernet.generate_key().decode())
os.environ.setdefault("PLATFORM_FEE_ACCOUNT", str(Keypair().pubkey()))

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool
from memeswap.database import Base
from memeswap.models.coin import MemeCoin, SOL_MINT
from memeswap.models.portfolio import PortfolioAsset
from memeswap.models.trade import Trade, TradeStatus, TradeType
from memeswap.models.user import User
from memeswap.models.wallet import Wallet
from memeswap.services.keystore import generate_wallet_keys

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

BONK = "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263"
WIF = "EKpQGSJtjMFqKZ9KQanSqYXRcF8fBopzLHYxdM65zcjm"


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        TEST_DATABASE_URL, poolclass=StaticPool, connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def mock_redis():
    r = AsyncMock()
    r.mget = AsyncMock(side_effect=lambda keys: [None] * len(keys))
    r.set = AsyncMock()
    return r


class Factory:
    """Inserts ledger rows with committed state."""

    def __init__(self, db):
        self.db = db
        self._n = 0

    async def user(self, username: str = None) -> User:
        self._n += 1
        username = username or f"user{self._n}"
        user = User(email=f"{username}@example.com", username=username, password_hash="x")
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def coin(self, mint: str, symbol: str, price: str = "1", volume: str = "0", decimals: int = 6) -> MemeCoin:
        coin = MemeCoin(id=mint, symbol=symbol, name=symbol.title(), decimals=decimals,
                        current_price=Decimal(price), market_cap=Decimal("0"), volume_24h=Decimal(volume))
        self.db.add(coin)
        await self.db.commit()
        await self.db.refresh(coin)
        return coin

    async def coins(self):
        sol = await self.coin(SOL_MINT, "SOL", price="100", decimals=9)
        bonk = await self.coin(BONK, "BONK", price="10", volume="1000000", decimals=5)
        return sol, bonk

    async def wallet(self, user: User, balance: str = "10") -> Wallet:
        public_key, encrypted = generate_wallet_keys()
        wallet = Wallet(user_id=user.id, public_key=public_key, encrypted_private_key=encrypted,
                        balance=Decimal(balance), locked_balance=Decimal("0"))
        self.db.add(wallet)
        await self.db.commit()
        await self.db.refresh(wallet)
        return wallet

    async def holding(self, user: User, coin_id: str, amount: str, avg: str) -> PortfolioAsset:
        asset = PortfolioAsset(user_id=user.id, coin_id=coin_id, amount=Decimal(amount),
                               locked_amount=Decimal("0"), average_buy_price=Decimal(avg))
        self.db.add(asset)
        await self.db.commit()
        await self.db.refresh(asset)
        return asset

    async def trade(self, user: User, type: TradeType, coin_id: str, amount: str, price: str,
                    fee: str = "0", tx_hash: str = None, status: TradeStatus = TradeStatus.pending,
                    from_coin_id: str = None, to_coin_id: str = None, input_amount: str = None,
                    cost_basis: str = None, input_price: str = None, **extra) -> Trade:
        self._n += 1
        if type == TradeType.buy:
            from_coin_id, to_coin_id = SOL_MINT, coin_id
        elif type == TradeType.sell:
            from_coin_id, to_coin_id = coin_id, SOL_MINT
        if status == TradeStatus.completed:
            extra.setdefault("completed_at", datetime.now(timezone.utc))
        if input_amount is None:
            input_amount = str(Decimal(amount) * Decimal(price)) if type == TradeType.buy else amount
        trade = Trade(
            user_id=user.id, coin_id=coin_id, from_coin_id=from_coin_id, to_coin_id=to_coin_id,
            type=type, amount=Decimal(amount), input_amount=Decimal(input_amount),
            price=Decimal(price), fee=Decimal(fee), slippage_bps=100, status=status,
            confirmations=0, transaction_hash=tx_hash or f"sig{self._n}",
            cost_basis=Decimal(cost_basis) if cost_basis is not None else None,
            input_price=Decimal(input_price) if input_price is not None else None,
            **extra,
        )
        self.db.add(trade)
        await self.db.commit()
        await self.db.refresh(trade)
        return trade


@pytest_asyncio.fixture
async def factory(db):
    return Factory(db)
