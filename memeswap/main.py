from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from memeswap.config import settings
from memeswap.core.exceptions import TradingError
from memeswap.core.redis import close_redis, get_redis
from memeswap.logging_config import setup_logging
from memeswap.routers import coins, portfolio, trades, wallet
from memeswap.services.coins import refresh_coin_prices
from memeswap.services.confirmation_poller import ConfirmationPoller
from memeswap.services.jupiter import JupiterClient
from memeswap.services.reconciler import reconcile_job
from memeswap.services.solana_rpc import SolanaRpcClient
from memeswap.services.trade_executor import TradeExecutor

scheduler = AsyncIOScheduler()

@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.LOG_LEVEL)
    await get_redis()
    app.state.jupiter = JupiterClient()
    app.state.chain = SolanaRpcClient()
    poller = ConfirmationPoller(app.state.chain)
    app.state.executor = TradeExecutor(app.state.jupiter, app.state.chain, poller)

    scheduler.add_job(refresh_coin_prices, "interval", seconds=settings.PRICE_REFRESH_INTERVAL_SEC,
                      kwargs={"jupiter": app.state.jupiter}, max_instances=1, coalesce=True)
    scheduler.add_job(reconcile_job, "interval", seconds=settings.RECONCILE_INTERVAL_SEC,
                      kwargs={"poller": poller}, max_instances=1, coalesce=True)
    scheduler.start()
    yield
    scheduler.shutdown()
    await app.state.executor.wait_for_polls()
    await app.state.jupiter.close()
    await app.state.chain.close()
    await close_redis()

app = FastAPI(title="Memeswap API", lifespan=lifespan)

_allowed_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] or ["http://localhost:3000"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(TradingError)
async def trading_error_handler(request: Request, exc: TradingError):
    return JSONResponse(status_code=exc.status_code,
                        content={"detail": exc.message, "error": type(exc).__name__})

app.include_router(coins.router)
app.include_router(trades.router)
app.include_router(portfolio.router)
app.include_router(wallet.router)

@app.get("/health")
async def health():
    return {"status": "ok"}
