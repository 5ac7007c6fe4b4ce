from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from memeswap.database import Base

class PortfolioAsset(Base):
    __tablename__ = "portfolios"
    __table_args__ = (
        UniqueConstraint("user_id", "coin_id", name="uq_portfolio_user_coin"),
    )

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    coin_id = Column(String(64), ForeignKey("meme_coins.id"), nullable=False)
    amount = Column(Numeric(precision=38, scale=18), nullable=False, default=0)
    # reserved by submitted, not yet settled sells
    locked_amount = Column(Numeric(precision=38, scale=18), nullable=False, default=0)
    average_buy_price = Column(Numeric(precision=38, scale=18), nullable=False, default=0)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="holdings")
