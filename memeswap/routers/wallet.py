from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from memeswap.database import get_db
from memeswap.core.deps import get_chain, get_current_user
from memeswap.models.transfer import Withdrawal
from memeswap.models.user import User
from memeswap.models.wallet import Wallet
from memeswap.schemas.wallet import AirdropRequest, DepositVerifyRequest, WithdrawRequest
from memeswap.services import wallets
from memeswap.services.solana_rpc import SolanaRpcClient

router = APIRouter(prefix="/api/wallet", tags=["wallet"])

def wallet_dict(w: Wallet) -> dict:
    # never expose encrypted_private_key
    return {
        "public_key": w.public_key,
        "balance": str(w.balance),
        "locked": str(w.locked_balance or 0),
        "available": str(w.balance - (w.locked_balance or 0)),
        "last_updated": w.last_updated.isoformat() if w.last_updated else None,
    }

def withdrawal_dict(w: Withdrawal) -> dict:
    return {
        "id": w.id,
        "amount": str(w.amount),
        "to_address": w.to_address,
        "status": w.status,
        "transaction_hash": w.transaction_hash,
        "error": w.error,
        "created_at": w.created_at.isoformat() if w.created_at else None,
        "processed_at": w.processed_at.isoformat() if w.processed_at else None,
    }

@router.post("")
async def create(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return wallet_dict(await wallets.create_wallet(db, user.id))

@router.get("")
async def get_wallet(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return wallet_dict(await wallets.get_user_wallet(db, user.id))

@router.get("/tokens")
async def token_balances(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    chain: SolanaRpcClient = Depends(get_chain),
):
    balances = await wallets.get_token_balances(db, user.id, chain)
    return [{**b, "amount": str(b["amount"])} for b in balances]

@router.post("/sync")
async def sync(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    chain: SolanaRpcClient = Depends(get_chain),
):
    return wallet_dict(await wallets.sync_balance(db, user.id, chain))

@router.post("/deposit/verify")
async def verify_deposit(
    body: DepositVerifyRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    chain: SolanaRpcClient = Depends(get_chain),
):
    deposit = await wallets.verify_deposit(db, user.id, body.tx_hash, chain)
    return {"id": deposit.id, "amount": str(deposit.amount), "transaction_hash": deposit.transaction_hash}

@router.post("/withdraw")
async def withdraw(
    body: WithdrawRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    chain: SolanaRpcClient = Depends(get_chain),
):
    return withdrawal_dict(await wallets.request_withdrawal(db, user.id, body.to_address, body.amount, chain))

@router.get("/withdrawals")
async def my_withdrawals(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return [withdrawal_dict(w) for w in await wallets.list_withdrawals(db, user.id)]

@router.post("/airdrop")
async def airdrop(
    body: AirdropRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    chain: SolanaRpcClient = Depends(get_chain),
):
    signature = await wallets.fund_testnet_wallet(db, user.id, body.amount, chain)
    return {"transaction_hash": signature, "amount": str(body.amount)}
