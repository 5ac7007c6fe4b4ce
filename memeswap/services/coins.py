import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from memeswap.core.exceptions import NotFoundError, TradingError
from memeswap.database import AsyncSessionLocal
from memeswap.models.coin import MemeCoin, PriceHistory
from memeswap.services.jupiter import JupiterClient

logger = logging.getLogger(__name__)


async def get_coin(db: AsyncSession, mint: str) -> MemeCoin:
    coin = await db.get(MemeCoin, mint)
    if coin is None:
        raise NotFoundError(f"Coin {mint} not found")
    return coin


async def list_coins(db: AsyncSession) -> list[MemeCoin]:
    return list(await db.scalars(select(MemeCoin).order_by(MemeCoin.symbol)))


async def refresh_coin_prices(
    jupiter: Optional[JupiterClient] = None,
    session_factory: async_sessionmaker = AsyncSessionLocal,
) -> int:
    """Scheduled job: pull USD prices for every listed coin in one request.

    Updates ``current_price`` and appends a ``price_history`` row per coin.
    Returns the number of coins updated.
    """
    own_client = jupiter is None
    jupiter = jupiter or JupiterClient()
    try:
        async with session_factory() as db:
            coins = await list_coins(db)
            if not coins:
                return 0
            try:
                prices = await jupiter.get_prices([c.id for c in coins])
            except TradingError as e:
                logger.warning("Price refresh failed: %s", e.message)
                return 0

            updated = 0
            for coin in coins:
                price: Optional[Decimal] = prices.get(coin.id)
                if price is None:
                    continue
                coin.current_price = price
                db.add(PriceHistory(coin_id=coin.id, price=price))
                updated += 1
            await db.commit()
            logger.info("Refreshed prices for %d coins", updated)
            return updated
    finally:
        if own_client:
            await jupiter.close()
