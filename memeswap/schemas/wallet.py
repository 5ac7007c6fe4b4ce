from pydantic import BaseModel, Field
from decimal import Decimal

class DepositVerifyRequest(BaseModel):
    tx_hash: str

class WithdrawRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    to_address: str

class AirdropRequest(BaseModel):
    amount: Decimal = Field(default=Decimal("1"), gt=0)
