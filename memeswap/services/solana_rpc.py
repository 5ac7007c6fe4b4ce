import base64
import itertools
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

import httpx

from memeswap.config import settings
from memeswap.core.exceptions import UpstreamError, chain_error

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


def lamports_to_sol(lamports: int) -> Decimal:
    return Decimal(lamports) / Decimal(LAMPORTS_PER_SOL)


def sol_to_lamports(sol: Decimal) -> int:
    return int((Decimal(sol) * LAMPORTS_PER_SOL).to_integral_value())


@dataclass
class SignatureStatus:
    slot: Optional[int]
    confirmations: Optional[int]
    confirmation_status: Optional[str]
    err: Any = None

    @property
    def failed(self) -> bool:
        return self.err is not None

    @property
    def finalized(self) -> bool:
        return self.err is None and self.confirmation_status == "finalized"


class SolanaRpcClient:
    """Minimal async JSON-RPC client for the Solana methods the ledger needs."""

    def __init__(self, rpc_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.rpc_url = rpc_url or settings.SOLANA_RPC_URL
        self.client = client or httpx.AsyncClient(timeout=30.0)
        self._ids = itertools.count(1)

    async def _call(self, method: str, params: list) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self.client.post(self.rpc_url, json=payload)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Solana RPC {method} unreachable: {e}") from e
        if resp.status_code != 200:
            raise UpstreamError(f"Solana RPC {method} failed: HTTP {resp.status_code}")

        data = resp.json()
        error = data.get("error")
        if error:
            # Preflight simulation failures carry the TransactionError in data.err
            err_data = error.get("data") or {}
            if isinstance(err_data, dict) and err_data.get("err") is not None:
                raise chain_error(err_data["err"], "Transaction simulation failed", err_data.get("logs"))
            raise UpstreamError(f"Solana RPC {method} error {error.get('code')}: {error.get('message')}")
        return data.get("result")

    async def get_balance(self, public_key: str) -> int:
        """Return the lamport balance of ``public_key``."""
        result = await self._call("getBalance", [public_key, {"commitment": "confirmed"}])
        return int(result["value"])

    async def get_token_accounts_by_owner(self, owner: str) -> list[dict]:
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"programId": TOKEN_PROGRAM_ID}, {"encoding": "jsonParsed"}],
        )
        balances = []
        for acc in result.get("value", []):
            info = acc["account"]["data"]["parsed"]["info"]
            token_amount = info["tokenAmount"]
            balances.append({
                "account": acc["pubkey"],
                "mint": info["mint"],
                "amount": Decimal(token_amount["uiAmountString"]),
                "decimals": token_amount["decimals"],
            })
        return balances

    async def get_latest_blockhash(self) -> str:
        result = await self._call("getLatestBlockhash", [{"commitment": "finalized"}])
        return result["value"]["blockhash"]

    async def send_transaction(self, raw_tx: bytes) -> str:
        encoded = base64.b64encode(raw_tx).decode()
        signature = await self._call(
            "sendTransaction",
            [encoded, {"encoding": "base64", "skipPreflight": False, "preflightCommitment": "confirmed"}],
        )
        logger.info("Transaction sent: %s", signature)
        return signature

    async def get_signature_status(self, signature: str) -> Optional[SignatureStatus]:
        """Return the status of ``signature`` or ``None`` while the cluster has not seen it."""
        result = await self._call(
            "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
        )
        values = result.get("value") or []
        if not values or values[0] is None:
            return None
        status = values[0]
        return SignatureStatus(
            slot=status.get("slot"),
            confirmations=status.get("confirmations"),
            confirmation_status=status.get("confirmationStatus"),
            err=status.get("err"),
        )

    async def get_transaction(self, signature: str) -> Optional[dict]:
        return await self._call(
            "getTransaction",
            [signature, {"encoding": "jsonParsed", "commitment": "finalized",
                         "maxSupportedTransactionVersion": 0}],
        )

    async def request_airdrop(self, public_key: str, lamports: int) -> str:
        return await self._call("requestAirdrop", [public_key, lamports])

    async def close(self):
        await self.client.aclose()
