from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from memeswap.database import Base

class Wallet(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    public_key = Column(String(64), unique=True, nullable=False, index=True)
    # Fernet token of the 64-byte keypair; never the plaintext secret
    encrypted_private_key = Column(String, nullable=False)
    balance = Column(Numeric(precision=38, scale=18), nullable=False, default=0)
    locked_balance = Column(Numeric(precision=38, scale=18), nullable=False, default=0)
    last_updated = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="wallet")
