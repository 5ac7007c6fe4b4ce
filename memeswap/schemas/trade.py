from pydantic import BaseModel, Field
from decimal import Decimal
from typing import Optional

class QuoteRequest(BaseModel):
    from_coin_id: str
    to_coin_id: str
    amount: Decimal = Field(gt=0)

class SubmitTradeRequest(BaseModel):
    from_coin_id: str
    to_coin_id: str
    amount: Decimal = Field(gt=0)
    slippage_bps: Optional[int] = Field(default=None, ge=0)
