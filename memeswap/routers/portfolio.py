from datetime import datetime
from decimal import Decimal
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from memeswap.database import get_db
from memeswap.core.deps import get_current_user
from memeswap.models.user import User
from memeswap.services.portfolio import get_leaderboard, get_portfolio, get_trade_pnl, get_user_rank

router = APIRouter(prefix="/api", tags=["portfolio"])

def to_wire(value):
    """Decimals travel as strings, datetimes as ISO 8601."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_wire(v) for k, v in value.items()}
    if isinstance(value, list):
        return [to_wire(v) for v in value]
    return value

@router.get("/portfolio")
async def portfolio(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return to_wire(await get_portfolio(db, user.id))

@router.get("/portfolio/pnl")
async def pnl(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return to_wire(await get_trade_pnl(db, user.id))

@router.get("/leaderboard")
async def leaderboard(
    timeframe: str = "24h",
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    return to_wire(await get_leaderboard(db, timeframe, limit))

@router.get("/leaderboard/me")
async def my_rank(
    timeframe: str = "24h",
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return to_wire(await get_user_rank(db, user.id, timeframe))
