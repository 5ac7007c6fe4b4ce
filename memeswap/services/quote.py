import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from memeswap.config import settings
from memeswap.core.exceptions import ValidationError
from memeswap.models.coin import SOL_MINT, MemeCoin
from memeswap.services.coins import get_coin
from memeswap.services.jupiter import JupiterClient

logger = logging.getLogger(__name__)

MAX_PRICE_IMPACT = Decimal("0.05")


@dataclass(frozen=True)
class Quote:
    from_coin_id: str
    to_coin_id: str
    amount: Decimal
    estimated_amount: Decimal
    exchange_rate: Decimal
    # USD
    fee: Decimal
    price_impact: Decimal
    from_price: Decimal
    to_price: Decimal
    # SOL per unit, used for settlement
    from_price_sol: Decimal
    to_price_sol: Decimal


def validate_pair(from_token: str, to_token: str, amount: Decimal) -> None:
    if amount is None or amount <= 0:
        raise ValidationError("Amount must be positive")
    if from_token == to_token:
        raise ValidationError("Cannot trade a coin for itself")


def estimate_price_impact(value_usd: Decimal, *coins: MemeCoin) -> Decimal:
    """Trade size against the 24h volume of the less liquid side, capped at 5%."""
    volumes = [Decimal(c.volume_24h) for c in coins if c.id != SOL_MINT and c.volume_24h]
    if not volumes:
        return Decimal("0")
    return min(MAX_PRICE_IMPACT, value_usd / min(volumes))


class QuoteService:
    """Read-only pricing of a prospective trade."""

    def __init__(self, jupiter: JupiterClient):
        self.jupiter = jupiter

    async def get_quote(self, db: AsyncSession, from_token: str, to_token: str, amount: Decimal) -> Quote:
        validate_pair(from_token, to_token, amount)
        from_coin = await get_coin(db, from_token)
        to_coin = await get_coin(db, to_token)

        prices = await self.jupiter.get_prices([from_token, to_token, SOL_MINT])
        price_from = prices[from_token]
        price_to = prices[to_token]
        price_sol = prices[SOL_MINT]
        if price_to <= 0 or price_sol <= 0:
            raise ValidationError(f"No usable price for {to_token}")

        exchange_rate = price_from / price_to
        value_usd = amount * price_from
        quote = Quote(
            from_coin_id=from_token,
            to_coin_id=to_token,
            amount=amount,
            estimated_amount=amount * exchange_rate,
            exchange_rate=exchange_rate,
            fee=value_usd * settings.fee_rate,
            price_impact=estimate_price_impact(value_usd, from_coin, to_coin),
            from_price=price_from,
            to_price=price_to,
            from_price_sol=price_from / price_sol,
            to_price_sol=price_to / price_sol,
        )
        logger.debug("Quote %s %s -> %s: rate=%s fee=%s", amount, from_token, to_token,
                     exchange_rate, quote.fee)
        return quote
