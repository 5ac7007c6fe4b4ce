from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from memeswap.database import get_db
from memeswap.models.coin import MemeCoin
from memeswap.services.coins import get_coin, list_coins

router = APIRouter(prefix="/api/coins", tags=["coins"])

def coin_dict(c: MemeCoin) -> dict:
    return {
        "id": c.id,
        "symbol": c.symbol,
        "name": c.name,
        "decimals": c.decimals,
        "current_price": str(c.current_price or 0),
        "market_cap": str(c.market_cap or 0),
        "volume_24h": str(c.volume_24h or 0),
        "updated_at": c.updated_at.isoformat() if c.updated_at else None,
    }

@router.get("")
async def all_coins(db: AsyncSession = Depends(get_db)):
    return [coin_dict(c) for c in await list_coins(db)]

@router.get("/{mint}")
async def one_coin(mint: str, db: AsyncSession = Depends(get_db)):
    return coin_dict(await get_coin(db, mint))
