"""SQLAlchemy database models for persistent storage."""

from sqlalchemy import Column, DateTime, Float, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class RatesCacheRecord(Base):
    """Latest rate list served by the tiered cache (singleton row id=1)."""
    __tablename__ = "rates_cache"

    id = Column(Integer, primary_key=True)
    data = Column(Text, nullable=False)  # JSON string
    cached_at = Column(DateTime(timezone=True), nullable=False)


class BinanceP2PRateRecord(Base):
    """One successful marketplace sample, append-only."""
    __tablename__ = "binance_p2p_rates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    fiat = Column(String, nullable=False)
    asset = Column(String, nullable=False)
    trade_type = Column(String, nullable=False)  # "BUY" or "SELL"
    average_price = Column(Float, nullable=True)
    median_price = Column(Float, nullable=True)
    prices = Column(Text, nullable=False)  # JSON array, listing order
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)


class RateSampleRecord(Base):
    """History of persisted rate samples, one row per detected change."""
    __tablename__ = "rate_samples"
    __table_args__ = (
        UniqueConstraint("source", "currency", "observed_at", name="uq_rate_sample"),
    )

    id = Column(String, primary_key=True)
    source = Column(String, nullable=False)  # "official" or "marketplace"
    currency = Column(String, nullable=False)
    rate_type = Column(String, nullable=False)  # "official" or "p2p"
    value = Column(Float, nullable=False)
    aux_value = Column(Float, nullable=True)
    raw_evidence = Column(Text, nullable=True)
    observed_at = Column(DateTime(timezone=True), nullable=False)


# Latest-value lookups walk (source, currency) newest first
Index(
    "ix_rate_samples_latest",
    RateSampleRecord.source,
    RateSampleRecord.currency,
    RateSampleRecord.observed_at.desc(),
)
