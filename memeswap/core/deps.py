from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from memeswap.database import get_db
from memeswap.models.user import User
from memeswap.core.security import decode_token
from memeswap.services.jupiter import JupiterClient
from memeswap.services.solana_rpc import SolanaRpcClient
from memeswap.services.trade_executor import TradeExecutor

bearer = HTTPBearer()

async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer),
    db: AsyncSession = Depends(get_db),
) -> User:
    user_id = decode_token(credentials.credentials)
    if not user_id:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "Invalid token")
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status.HTTP_401_UNAUTHORIZED, "User not found")
    return user

# Long-lived clients created in the app lifespan
def get_jupiter(request: Request) -> JupiterClient:
    return request.app.state.jupiter

def get_chain(request: Request) -> SolanaRpcClient:
    return request.app.state.chain

def get_executor(request: Request) -> TradeExecutor:
    return request.app.state.executor
