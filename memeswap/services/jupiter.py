import logging
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

import httpx

from memeswap.config import settings
from memeswap.core.exceptions import NotFoundError, UpstreamError
from memeswap.core.redis import get_redis

logger = logging.getLogger(__name__)

PRICE_ENDPOINT = "/price/v2"
QUOTE_ENDPOINT = "/swap/v1/quote"
SWAP_ENDPOINT = "/swap/v1/swap"


def _price_key(mint: str) -> str:
    return f"price:{mint}"


class JupiterClient:
    """Price, quote and swap-transaction client for the Jupiter aggregator."""

    def __init__(self, base_url: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        self.base_url = (base_url or settings.JUPITER_BASE_URL).rstrip("/")
        headers = {"x-api-key": settings.JUPITER_API_KEY} if settings.JUPITER_API_KEY else {}
        self.client = client or httpx.AsyncClient(timeout=10.0, headers=headers)

    async def _get(self, path: str, params: dict) -> dict:
        try:
            resp = await self.client.get(f"{self.base_url}{path}", params=params)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Jupiter {path} unreachable: {e}") from e
        if resp.status_code != 200:
            raise UpstreamError(f"Jupiter {path} failed: {resp.text}")
        return resp.json()

    async def get_prices(self, mints: Iterable[str]) -> dict[str, Decimal]:
        """Fetch USD prices for ``mints`` in a single request.

        Fresh prices are served from Redis; only the missing mints go upstream.
        Mints the provider has no price for raise NotFoundError.
        """
        wanted = list(dict.fromkeys(mints))
        redis = await get_redis()
        cached = await redis.mget([_price_key(m) for m in wanted])

        prices: dict[str, Decimal] = {}
        missing = []
        for mint, raw in zip(wanted, cached):
            if raw is not None:
                prices[mint] = Decimal(raw)
            else:
                missing.append(mint)

        if missing:
            data = await self._get(PRICE_ENDPOINT, {"ids": ",".join(missing)})
            entries = data.get("data") or {}
            for mint in missing:
                entry = entries.get(mint)
                if not entry or entry.get("price") is None:
                    raise NotFoundError(f"No price available for {mint}")
                try:
                    price = Decimal(str(entry["price"]))
                except InvalidOperation as e:
                    raise UpstreamError(f"Malformed price for {mint}: {entry['price']}") from e
                prices[mint] = price
                await redis.set(_price_key(mint), str(price), ex=settings.PRICE_CACHE_TTL_SEC)

        return prices

    async def get_quote(
        self, input_mint: str, output_mint: str, raw_amount: int, slippage_bps: int, platform_fee_bps: int = 0,
    ) -> dict:
        """ExactIn route quote; ``raw_amount`` is in the input mint's base units.

        With a platform fee the returned ``outAmount`` is already net of it.
        """
        params = {
            "inputMint": input_mint,
            "outputMint": output_mint,
            "amount": str(raw_amount),
            "slippageBps": slippage_bps,
            "swapMode": "ExactIn",
        }
        if platform_fee_bps > 0:
            params["platformFeeBps"] = platform_fee_bps
        quote = await self._get(QUOTE_ENDPOINT, params)
        if "outAmount" not in quote:
            raise UpstreamError(f"Jupiter returned no route for {input_mint} -> {output_mint}")
        logger.debug("Quote %s -> %s: in=%s out=%s impact=%s", input_mint, output_mint,
                     quote.get("inAmount"), quote.get("outAmount"), quote.get("priceImpactPct"))
        return quote

    async def create_swap_transaction(self, quote: dict, user_public_key: str, fee_account: Optional[str] = None) -> str:
        """Return the base64 unsigned versioned transaction for ``quote``.

        Jupiter adds the instructions creating any missing destination token
        account and wraps/unwraps native SOL.
        """
        body = {
            "quoteResponse": quote,
            "userPublicKey": user_public_key,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
        }
        if fee_account:
            body["feeAccount"] = fee_account
        try:
            resp = await self.client.post(f"{self.base_url}{SWAP_ENDPOINT}", json=body)
        except httpx.HTTPError as e:
            raise UpstreamError(f"Jupiter swap unreachable: {e}") from e
        if resp.status_code != 200:
            raise UpstreamError(f"Jupiter swap failed: {resp.text}")
        data = resp.json()
        tx = data.get("swapTransaction")
        if not tx:
            raise UpstreamError("Jupiter swap returned no transaction")
        return tx

    async def close(self):
        await self.client.aclose()
