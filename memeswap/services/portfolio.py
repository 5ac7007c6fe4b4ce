"""Read-side aggregation over the ledger: holdings, realized P&L, rankings."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from memeswap.core.exceptions import ValidationError
from memeswap.models.coin import SOL_MINT, MemeCoin
from memeswap.models.portfolio import PortfolioAsset
from memeswap.models.trade import Trade, TradeStatus, TradeType
from memeswap.models.user import User
from memeswap.models.wallet import Wallet

ZERO = Decimal("0")

TIMEFRAMES = {
    "24h": timedelta(hours=24),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}


def timeframe_start(timeframe: str, now: Optional[datetime] = None) -> datetime:
    if timeframe not in TIMEFRAMES:
        raise ValidationError(f"Unknown timeframe {timeframe!r}; expected one of {', '.join(TIMEFRAMES)}")
    return (now or datetime.now(timezone.utc)) - TIMEFRAMES[timeframe]


def _dec(value) -> Decimal:
    return Decimal(value) if value is not None else ZERO


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    return part / whole * 100 if whole else ZERO


async def get_portfolio(db: AsyncSession, user_id: int) -> dict:
    """Holdings valued at the last refreshed coin prices.

    Values are USD; unrealized P&L is in SOL, the unit cost basis is kept in.
    """
    rows = (await db.execute(
        select(PortfolioAsset, MemeCoin)
        .join(MemeCoin, MemeCoin.id == PortfolioAsset.coin_id)
        .where(PortfolioAsset.user_id == user_id, PortfolioAsset.amount > 0)
        .order_by(MemeCoin.symbol)
    )).all()
    sol_price = _dec(await db.scalar(select(MemeCoin.current_price).where(MemeCoin.id == SOL_MINT)))
    wallet = await db.scalar(select(Wallet).where(Wallet.user_id == user_id))

    holdings = []
    total_value = ZERO
    total_cost = ZERO
    total_pnl = ZERO
    for asset, coin in rows:
        amount = _dec(asset.amount)
        price_usd = _dec(coin.current_price)
        price_sol = price_usd / sol_price if sol_price else ZERO
        cost = amount * _dec(asset.average_buy_price)
        pnl = amount * price_sol - cost
        value = amount * price_usd
        holdings.append({
            "coin_id": coin.id,
            "symbol": coin.symbol,
            "name": coin.name,
            "amount": amount,
            "locked_amount": _dec(asset.locked_amount),
            "average_buy_price": _dec(asset.average_buy_price),
            "current_price": price_usd,
            "value": value,
            "unrealized_pnl": pnl,
            "unrealized_pnl_percent": _percent(pnl, cost),
        })
        total_value += value
        total_cost += cost
        total_pnl += pnl

    sol_balance = _dec(wallet.balance) if wallet else ZERO
    return {
        "sol_balance": sol_balance,
        "sol_locked": _dec(wallet.locked_balance) if wallet else ZERO,
        "sol_value": sol_balance * sol_price,
        "holdings": holdings,
        "total_value": total_value + sol_balance * sol_price,
        "unrealized_pnl": total_pnl,
        "unrealized_pnl_percent": _percent(total_pnl, total_cost),
    }


# a swap disposes of input_amount of from_coin_id at input_price
_disposed = case((Trade.type == TradeType.swap, Trade.input_amount), else_=Trade.amount)
_disposal_price = case((Trade.type == TradeType.swap, Trade.input_price), else_=Trade.price)


def _realized():
    return func.coalesce(func.sum(_disposed * (_disposal_price - Trade.cost_basis)), 0)


def _disposed_cost():
    return func.coalesce(func.sum(_disposed * Trade.cost_basis), 0)


def _completed_disposals(since: Optional[datetime] = None):
    """Completed sells and swaps, optionally only those settled since ``since``."""
    conditions = [
        Trade.status == TradeStatus.completed,
        Trade.type.in_((TradeType.sell, TradeType.swap)),
        Trade.cost_basis.is_not(None),
    ]
    if since is not None:
        conditions.append(Trade.completed_at >= since)
    return conditions


async def get_trade_pnl(db: AsyncSession, user_id: int) -> dict:
    row = (await db.execute(
        select(
            _realized(),
            _disposed_cost(),
            func.count(Trade.id),
        ).where(Trade.user_id == user_id, *_completed_disposals())
    )).one()
    pnl, cost, sells = _dec(row[0]), _dec(row[1]), row[2]
    return {
        "realized_pnl": pnl,
        "realized_pnl_percent": _percent(pnl, cost),
        "sell_count": sells,
    }


async def _ranked(db: AsyncSession, since: datetime) -> list[dict]:
    wins = func.sum(case((_disposal_price > Trade.cost_basis, 1), else_=0))
    rows = (await db.execute(
        select(
            Trade.user_id,
            User.username,
            _realized().label("pnl"),
            _disposed_cost().label("cost"),
            func.count(Trade.id).label("trades"),
            wins.label("wins"),
        )
        .join(User, User.id == Trade.user_id)
        .where(*_completed_disposals(since))
        .group_by(Trade.user_id, User.username)
    )).all()

    entries = sorted(
        ({
            "user_id": r.user_id,
            "username": r.username,
            "profit_loss": _dec(r.pnl),
            "profit_loss_percent": _percent(_dec(r.pnl), _dec(r.cost)),
            "total_trades": r.trades,
            "win_rate": Decimal(r.wins or 0) / r.trades if r.trades else ZERO,
        } for r in rows),
        key=lambda e: (-e["profit_loss"], e["user_id"]),
    )
    for rank, entry in enumerate(entries, start=1):
        entry["rank"] = rank
    return entries


async def get_leaderboard(db: AsyncSession, timeframe: str = "24h", limit: int = 50) -> dict:
    """Users ranked by realized P&L of sells and swaps settled in the timeframe."""
    entries = await _ranked(db, timeframe_start(timeframe))
    return {
        "timeframe": timeframe,
        "entries": entries[:limit],
        "total_users": len(entries),
        "updated_at": datetime.now(timezone.utc),
    }


async def get_user_rank(db: AsyncSession, user_id: int, timeframe: str = "24h") -> dict:
    entries = await _ranked(db, timeframe_start(timeframe))
    total = len(entries)
    for entry in entries:
        if entry["user_id"] == user_id:
            return {
                "timeframe": timeframe,
                "rank": entry["rank"],
                "profit_loss": entry["profit_loss"],
                "profit_loss_percent": entry["profit_loss_percent"],
                "total_users": total,
                "top_percentile": Decimal(entry["rank"]) / total * 100,
            }
    return {
        "timeframe": timeframe,
        "rank": None,
        "profit_loss": ZERO,
        "profit_loss_percent": ZERO,
        "total_users": total,
        "top_percentile": None,
    }
