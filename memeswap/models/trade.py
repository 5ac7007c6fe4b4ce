from sqlalchemy import Column, Integer, String, Numeric, DateTime, Enum, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum
from memeswap.database import Base

class TradeType(str, enum.Enum):
    buy = "buy"
    sell = "sell"
    swap = "swap"

class TradeStatus(str, enum.Enum):
    pending = "pending"
    completed = "completed"
    failed = "failed"

TERMINAL_STATUSES = (TradeStatus.completed, TradeStatus.failed)

class Trade(Base):
    __tablename__ = "trades"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    # the coin whose holding is bought or sold; for swaps, the received coin
    coin_id = Column(String(64), ForeignKey("meme_coins.id"), nullable=False)
    from_coin_id = Column(String(64), nullable=False)
    to_coin_id = Column(String(64), nullable=False)
    type = Column(Enum(TradeType), nullable=False)
    # coin units of coin_id
    amount = Column(Numeric(precision=38, scale=18), nullable=False)
    # units of from_coin_id spent
    input_amount = Column(Numeric(precision=38, scale=18), nullable=False)
    # SOL per unit of coin_id
    price = Column(Numeric(precision=38, scale=18), nullable=False)
    # platform fee in SOL; swaps pay it in from_coin_id, this is its SOL value
    fee = Column(Numeric(precision=38, scale=18), nullable=False, default=0)
    # SOL per unit of from_coin_id at execution, set on swaps
    input_price = Column(Numeric(precision=38, scale=18), nullable=True)
    # average buy price of the disposed holding at settlement (sells and swaps)
    cost_basis = Column(Numeric(precision=38, scale=18), nullable=True)
    slippage_bps = Column(Integer, nullable=False, default=0)
    status = Column(Enum(TradeStatus), nullable=False, default=TradeStatus.pending, index=True)
    chain_status = Column(String(20), nullable=True)
    confirmations = Column(Integer, nullable=False, default=0)
    transaction_hash = Column(String(100), unique=True, nullable=True, index=True)
    error = Column(String(500), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    completed_at = Column(DateTime(timezone=True), nullable=True, index=True)

    user = relationship("User", back_populates="trades")

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
