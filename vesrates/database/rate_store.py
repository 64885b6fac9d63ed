"""Persistent store for cached rate lists, rate samples and P2P quotes."""

import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import and_, desc, func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from vesrates.database.models import BinanceP2PRateRecord, RateSampleRecord, RatesCacheRecord
from vesrates.models.rates import MarketplaceQuote, RateSample, RateSource
from vesrates.services.errors import TransientStorageError
from vesrates.utils.logger import StructuredLogger

logger = StructuredLogger("RateStore")

# Singleton id of the rates_cache row
RATES_CACHE_ID = 1


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; they are always stored as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


@dataclass(frozen=True)
class CachedPayload:
    """A rates_cache row as read back from the store."""

    data: Any
    cached_at: datetime


class RateStore:
    """
    Thin repository over a SQLAlchemy session.

    Every database failure is rolled back and re-raised as
    TransientStorageError so callers only deal with the rates taxonomy.
    """

    def __init__(self, db_session: Session):
        self.db_session = db_session

    def _fail(self, operation: str, error: SQLAlchemyError) -> TransientStorageError:
        self.db_session.rollback()
        logger.error(
            f"Storage operation failed: {operation}",
            context={"operation": operation},
            exception=error,
        )
        return TransientStorageError(f"{operation} failed: {error}")

    # rates_cache

    def get_cache_row(self, row_id: int = RATES_CACHE_ID) -> CachedPayload | None:
        """Return the cached rate list for `row_id`, whatever its age."""
        try:
            record = self.db_session.get(RatesCacheRecord, row_id)
        except SQLAlchemyError as e:
            raise self._fail("get_cache_row", e) from e

        if record is None:
            return None
        try:
            data = json.loads(record.data)
        except (json.JSONDecodeError, TypeError) as e:
            logger.error(
                "Cached rate list is not valid JSON",
                context={"operation": "get_cache_row", "row_id": row_id},
                exception=e,
            )
            raise TransientStorageError(f"get_cache_row failed: corrupt row {row_id}") from e
        return CachedPayload(data=data, cached_at=as_utc(record.cached_at))

    def upsert_cache_row(self, data: Any, cached_at: datetime, row_id: int = RATES_CACHE_ID) -> None:
        """Insert or replace the cached rate list."""
        try:
            self.db_session.merge(
                RatesCacheRecord(id=row_id, data=json.dumps(data), cached_at=cached_at)
            )
            self.db_session.commit()
        except SQLAlchemyError as e:
            raise self._fail("upsert_cache_row", e) from e

    # rate_samples

    def save_rate_sample(self, sample: RateSample) -> None:
        try:
            self.db_session.add(
                RateSampleRecord(
                    id=str(uuid.uuid4()),
                    source=sample.source.value,
                    currency=sample.currency,
                    rate_type=sample.rate_type.value,
                    value=sample.value,
                    aux_value=sample.aux_value,
                    raw_evidence=sample.raw_evidence,
                    observed_at=sample.observed_at,
                )
            )
            self.db_session.commit()
        except SQLAlchemyError as e:
            raise self._fail("save_rate_sample", e) from e

    def get_last_value(self, source: RateSource, currency: str) -> float | None:
        """Most recently persisted value for (source, currency)."""
        try:
            record = (
                self.db_session.query(RateSampleRecord)
                .filter(
                    RateSampleRecord.source == source.value,
                    RateSampleRecord.currency == currency,
                )
                .order_by(desc(RateSampleRecord.observed_at))
                .first()
            )
        except SQLAlchemyError as e:
            raise self._fail("get_last_value", e) from e

        return record.value if record else None

    def get_current_rates(self, source: RateSource) -> dict[str, float]:
        """Latest persisted value of every currency observed from `source`."""
        latest = (
            self.db_session.query(
                RateSampleRecord.currency.label("currency"),
                func.max(RateSampleRecord.observed_at).label("observed_at"),
            )
            .filter(RateSampleRecord.source == source.value)
            .group_by(RateSampleRecord.currency)
            .subquery()
        )
        try:
            rows = (
                self.db_session.query(RateSampleRecord.currency, RateSampleRecord.value)
                .join(
                    latest,
                    and_(
                        RateSampleRecord.currency == latest.c.currency,
                        RateSampleRecord.observed_at == latest.c.observed_at,
                    ),
                )
                .filter(RateSampleRecord.source == source.value)
                .all()
            )
        except SQLAlchemyError as e:
            raise self._fail("get_current_rates", e) from e

        # (source, currency, observed_at) is unique, so one row per currency
        return {currency: value for currency, value in rows}

    # binance_p2p_rates

    def save_p2p_quote(self, quote: MarketplaceQuote) -> None:
        try:
            self.db_session.add(
                BinanceP2PRateRecord(
                    fiat=quote.fiat,
                    asset=quote.asset,
                    trade_type=quote.trade_type,
                    average_price=quote.average_price,
                    median_price=quote.median_price,
                    prices=json.dumps(quote.prices),
                    timestamp=quote.observed_at,
                )
            )
            self.db_session.commit()
        except SQLAlchemyError as e:
            raise self._fail("save_p2p_quote", e) from e

    def get_latest_p2p_quote(self, fiat: str = "VES", asset: str = "USDT") -> MarketplaceQuote | None:
        history = self.get_p2p_history(fiat, asset, limit=1)
        return history[0] if history else None

    def get_p2p_history(
        self, fiat: str = "VES", asset: str = "USDT", limit: int = 24
    ) -> list[MarketplaceQuote]:
        """Most recent marketplace quotes, newest first."""
        try:
            records = (
                self.db_session.query(BinanceP2PRateRecord)
                .filter(BinanceP2PRateRecord.fiat == fiat, BinanceP2PRateRecord.asset == asset)
                .order_by(desc(BinanceP2PRateRecord.timestamp))
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            raise self._fail("get_p2p_history", e) from e

        return [_parse_p2p_record(record) for record in records]

    def ping(self) -> bool:
        """Trivial round trip used by the health probe."""
        try:
            self.db_session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            raise self._fail("ping", e) from e
        return True


def _parse_p2p_record(record: BinanceP2PRateRecord) -> MarketplaceQuote:
    """Convert a binance_p2p_rates row to a MarketplaceQuote."""
    try:
        prices = json.loads(record.prices)
    except (json.JSONDecodeError, TypeError):
        prices = []

    return MarketplaceQuote(
        fiat=record.fiat,
        asset=record.asset,
        trade_type=record.trade_type,
        prices=prices,
        average_price=record.average_price,
        median_price=record.median_price,
        observed_at=as_utc(record.timestamp),
    )
