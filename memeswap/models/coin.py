from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.sql import func
from memeswap.database import Base

SOL_MINT = "So11111111111111111111111111111111111111112"
SOL_DECIMALS = 9

class MemeCoin(Base):
    __tablename__ = "meme_coins"

    # mint address
    id = Column(String(64), primary_key=True)
    symbol = Column(String(20), nullable=False)
    name = Column(String(100), nullable=False)
    decimals = Column(Integer, nullable=False, default=9)
    current_price = Column(Numeric(precision=38, scale=18), default=0)
    market_cap = Column(Numeric(precision=38, scale=18), default=0)
    volume_24h = Column(Numeric(precision=38, scale=18), default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

class PriceHistory(Base):
    __tablename__ = "price_history"

    id = Column(Integer, primary_key=True)
    coin_id = Column(String(64), ForeignKey("meme_coins.id"), nullable=False, index=True)
    price = Column(Numeric(precision=38, scale=18), nullable=False)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
