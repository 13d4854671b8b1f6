from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, TypeDecorator, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


class Amount(TypeDecorator):
    """Arbitrary-precision non-negative integer, stored as its decimal string."""

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"amount columns hold non-negative ints, got {value!r}")
        return str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else int(value)


class Event(Base):
    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String, primary_key=True)
    event_name: Mapped[str] = mapped_column(String, index=True)
    event_details: Mapped[str] = mapped_column(Text, default="")
    mint_start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    mint_end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True))
    mint_limit: Mapped[int] = mapped_column(Integer)
    gas_sponsored: Mapped[bool] = mapped_column(Boolean, default=True)
    transferable: Mapped[bool] = mapped_column(Boolean, default=False)
    passphrase_hash: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    nft_name: Mapped[str] = mapped_column(String)
    nft_description: Mapped[str] = mapped_column(Text)
    nft_image_url: Mapped[str] = mapped_column(String, nullable=True)
    nft_animation_url: Mapped[str] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class NftMint(Base):
    __tablename__ = "nft_mints"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String, index=True)
    wallet_address: Mapped[str] = mapped_column(String, index=True)
    transaction_id: Mapped[str] = mapped_column(String)
    sponsored: Mapped[bool] = mapped_column(Boolean, default=False)
    minted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("transaction_id", name="uniq_mint_tx"),)


class GasStation(Base):
    __tablename__ = "gas_station"

    # Single row, id == 1
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    available_balance: Mapped[int] = mapped_column(Amount, default=0)
    allocated_balance: Mapped[int] = mapped_column(Amount, default=0)
    total_used: Mapped[int] = mapped_column(Amount, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True))


class GasAllocation(Base):
    __tablename__ = "event_gas_allocations"

    event_id: Mapped[str] = mapped_column(String, primary_key=True)
    max_gas_per_tx: Mapped[int] = mapped_column(Amount)
    total_allocated: Mapped[int] = mapped_column(Amount, default=0)
    used: Mapped[int] = mapped_column(Amount, default=0)
    remaining_allocation: Mapped[int] = mapped_column(Amount, default=0)
    transactions: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class GasUsage(Base):
    __tablename__ = "gas_usages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String, index=True)
    transaction_id: Mapped[str] = mapped_column(String)
    gas_used: Mapped[int] = mapped_column(Amount)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (UniqueConstraint("transaction_id", name="uniq_usage_tx"),)


class GasReconciliation(Base):
    __tablename__ = "gas_reconciliations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(String, index=True)
    transaction_id: Mapped[str] = mapped_column(String, index=True)
    gas_used: Mapped[int] = mapped_column(Amount)
    reason_code: Mapped[str] = mapped_column(String)
    detail: Mapped[str] = mapped_column(Text)
    resolved: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class MintAuditLog(Base):
    __tablename__ = "mint_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    decision_id: Mapped[str] = mapped_column(String, index=True)
    ip: Mapped[str] = mapped_column(String)
    user_agent: Mapped[str] = mapped_column(String)
    event_id: Mapped[str] = mapped_column(String, index=True, nullable=True)
    wallet_address: Mapped[str] = mapped_column(String, index=True, nullable=True)
    transaction_id: Mapped[str] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String)
    reason_code: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
