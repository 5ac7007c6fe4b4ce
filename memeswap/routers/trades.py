from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from memeswap.database import get_db
from memeswap.core.deps import get_current_user, get_executor, get_jupiter
from memeswap.models.trade import Trade
from memeswap.models.user import User
from memeswap.schemas.trade import QuoteRequest, SubmitTradeRequest
from memeswap.services.jupiter import JupiterClient
from memeswap.services.quote import QuoteService
from memeswap.services.trade_executor import TradeExecutor, get_trade, get_trade_by_hash, list_trades

router = APIRouter(prefix="/api/trades", tags=["trades"])

def trade_dict(t: Trade) -> dict:
    return {
        "id": t.id,
        "type": t.type.value,
        "coin_id": t.coin_id,
        "from_coin_id": t.from_coin_id,
        "to_coin_id": t.to_coin_id,
        "amount": str(t.amount),
        "input_amount": str(t.input_amount),
        "price": str(t.price),
        "fee": str(t.fee),
        "cost_basis": str(t.cost_basis) if t.cost_basis is not None else None,
        "slippage_bps": t.slippage_bps,
        "status": t.status.value,
        "chain_status": t.chain_status,
        "confirmations": t.confirmations,
        "transaction_hash": t.transaction_hash,
        "error": t.error,
        "created_at": t.created_at.isoformat() if t.created_at else None,
        "completed_at": t.completed_at.isoformat() if t.completed_at else None,
    }

@router.post("/quote")
async def quote(
    body: QuoteRequest,
    db: AsyncSession = Depends(get_db),
    jupiter: JupiterClient = Depends(get_jupiter),
):
    q = await QuoteService(jupiter).get_quote(db, body.from_coin_id, body.to_coin_id, body.amount)
    return {
        "from_coin_id": q.from_coin_id,
        "to_coin_id": q.to_coin_id,
        "amount": str(q.amount),
        "estimated_amount": str(q.estimated_amount),
        "exchange_rate": str(q.exchange_rate),
        "fee": str(q.fee),
        "price_impact": str(q.price_impact),
    }

@router.post("")
async def submit(
    body: SubmitTradeRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    executor: TradeExecutor = Depends(get_executor),
):
    trade = await executor.submit_trade(
        db, user.id, body.from_coin_id, body.to_coin_id, body.amount, body.slippage_bps,
    )
    return trade_dict(trade)

@router.get("")
async def history(
    limit: int = Query(50, ge=1, le=200),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return [trade_dict(t) for t in await list_trades(db, user.id, limit)]

@router.get("/tx/{tx_hash}")
async def by_hash(tx_hash: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    trade = await get_trade_by_hash(db, tx_hash)
    return trade_dict(await get_trade(db, user.id, trade.id))

@router.get("/{trade_id}")
async def one_trade(trade_id: int, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return trade_dict(await get_trade(db, user.id, trade_id))
