"""Tests for the official rate extractor."""

from datetime import UTC, datetime, timedelta
from unittest.mock import patch

import httpx
import pytest
from hypothesis import given
from hypothesis import strategies as st

from http_mocks import make_response, wire_async_client
from vesrates.services.errors import ExtractionError
from vesrates.services.official_rate_extractor import (
    OfficialRateExtractor,
    RegexRateExtraction,
    parse_local_decimal,
)

OFFICIAL_HTML = """
<html><body>
<div id="euro" class="col-sm-12 col-xs-12">
  <div class="field-content"><div class="row recuadrotsmc">
    <div class="col-sm-6 col-xs-6"><img src="eur.png"> <span> EUR </span></div>
    <div class="col-sm-6 col-xs-6 centrado"><strong> 467,33207495 </strong></div>
  </div></div>
</div>
<div id="dolar" class="col-sm-12 col-xs-12">
  <div class="field-content"><div class="row recuadrotsmc">
    <div class="col-sm-6 col-xs-6"><img src="usd.png"> <span> USD </span></div>
    <div class="col-sm-6 col-xs-6 centrado"><strong> 393,22160000 </strong></div>
  </div></div>
</div>
</body></html>
"""

HTML_WITHOUT_EUR = OFFICIAL_HTML.split('<div id="dolar"')[0].replace('id="euro"', 'id="other"')


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self):
        self.now = datetime(2025, 1, 15, 13, 0, tzinfo=UTC)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


def route(primary=None, fallback=None):
    """Return a get() side effect answering per URL."""
    def _get(url, **kwargs):
        target = fallback if "dolarapi" in url else primary
        if isinstance(target, Exception):
            raise target
        return target
    return _get


class TestParseLocalDecimal:
    """Tests for BCV number normalization."""

    def test_comma_decimal(self):
        assert parse_local_decimal("393,22160000") == pytest.approx(393.2216)

    def test_thousands_separator(self):
        assert parse_local_decimal("1.234,5") == pytest.approx(1234.5)

    def test_surrounding_whitespace(self):
        assert parse_local_decimal(" 36,5 ") == pytest.approx(36.5)

    @pytest.mark.parametrize("literal", ["", None, "abc", ",", "0,00", "-5,0", "nan", "inf"])
    def test_invalid_literals_parse_to_zero(self, literal):
        assert parse_local_decimal(literal) == 0.0

    @given(
        integer_part=st.integers(min_value=1, max_value=10**9),
        cents=st.integers(min_value=0, max_value=99),
    )
    def test_locale_formatted_numbers_round_trip(self, integer_part, cents):
        """Any number written with period thousands and comma decimals parses back."""
        literal = f"{integer_part:,}".replace(",", ".") + f",{cents:02d}"
        assert parse_local_decimal(literal) == pytest.approx(integer_part + cents / 100)


class TestRegexRateExtraction:
    """Tests for the default HTML extraction strategy."""

    def test_extracts_both_currencies(self):
        matches = RegexRateExtraction().extract(OFFICIAL_HTML)
        assert matches == {"USD": "393,22160000", "EUR": "467,33207495"}

    def test_missing_currency_is_absent(self):
        matches = RegexRateExtraction().extract(HTML_WITHOUT_EUR)
        assert "EUR" not in matches

    def test_unrelated_html_matches_nothing(self):
        assert RegexRateExtraction().extract("<html><body>mantenimiento</body></html>") == {}


class TestOfficialRateExtractor:
    """Tests for scraping, caching and fallback."""

    @pytest.mark.asyncio
    async def test_primary_scrape_success(self):
        extractor = OfficialRateExtractor(clock=FakeClock())
        with patch("httpx.AsyncClient") as mock_client:
            wire_async_client(mock_client, get_side_effect=make_response(200, text=OFFICIAL_HTML))
            rates = await extractor.scrape()

        assert rates.via == "primary"
        assert rates.usd == pytest.approx(393.2216)
        assert rates.eur == pytest.approx(467.33207495)
        assert rates.as_dict() == {"USD": rates.usd, "EUR": rates.eur}
        assert extractor.get_cached_rates() == rates
        assert extractor.get_cache_timestamp() == extractor.clock()

    @pytest.mark.asyncio
    async def test_cached_pair_is_returned_without_io(self):
        clock = FakeClock()
        extractor = OfficialRateExtractor(clock=clock)
        with patch("httpx.AsyncClient") as mock_client:
            instance = wire_async_client(
                mock_client, get_side_effect=make_response(200, text=OFFICIAL_HTML)
            )
            await extractor.scrape()
            clock.advance(60)
            rates = await extractor.scrape()

        assert rates.via == "memory"
        assert instance.get.call_count == 1

    @pytest.mark.asyncio
    async def test_force_refresh_bypasses_cache(self):
        extractor = OfficialRateExtractor(clock=FakeClock())
        with patch("httpx.AsyncClient") as mock_client:
            instance = wire_async_client(
                mock_client, get_side_effect=make_response(200, text=OFFICIAL_HTML)
            )
            await extractor.scrape()
            rates = await extractor.scrape(force_refresh=True)

        assert rates.via == "primary"
        assert instance.get.call_count == 2

    @pytest.mark.asyncio
    async def test_expired_cache_refetches(self):
        clock = FakeClock()
        extractor = OfficialRateExtractor(ttl_seconds=300, clock=clock)
        with patch("httpx.AsyncClient") as mock_client:
            instance = wire_async_client(
                mock_client, get_side_effect=make_response(200, text=OFFICIAL_HTML)
            )
            await extractor.scrape()
            clock.advance(300)
            rates = await extractor.scrape()

        assert rates.via == "primary"
        assert instance.get.call_count == 2

    @pytest.mark.asyncio
    async def test_non_success_status_uses_fallback(self):
        extractor = OfficialRateExtractor(clock=FakeClock())
        with patch("httpx.AsyncClient") as mock_client:
            wire_async_client(
                mock_client,
                get_side_effect=route(
                    primary=make_response(503),
                    fallback=make_response(200, json_data={"promedio": 395.5}),
                ),
            )
            rates = await extractor.scrape()

        assert rates.via == "fallback"
        assert rates.usd == 395.5
        assert rates.eur == 0.0

    @pytest.mark.asyncio
    async def test_fallback_success_does_not_update_cache(self):
        extractor = OfficialRateExtractor(clock=FakeClock())
        with patch("httpx.AsyncClient") as mock_client:
            wire_async_client(
                mock_client,
                get_side_effect=route(
                    primary=make_response(500),
                    fallback=make_response(200, json_data={"promedio": 395.5}),
                ),
            )
            await extractor.scrape()

        assert extractor.get_cached_rates() is None
        assert extractor.get_cache_timestamp() is None

    @pytest.mark.asyncio
    async def test_unparsable_page_uses_fallback(self):
        extractor = OfficialRateExtractor(clock=FakeClock())
        with patch("httpx.AsyncClient") as mock_client:
            wire_async_client(
                mock_client,
                get_side_effect=route(
                    primary=make_response(200, text=HTML_WITHOUT_EUR),
                    fallback=make_response(200, json_data={"venta": 396.0, "compra": 390.0}),
                ),
            )
            rates = await extractor.scrape()

        assert rates.via == "fallback"
        assert rates.usd == 396.0

    @pytest.mark.asyncio
    async def test_transport_error_uses_fallback(self):
        extractor = OfficialRateExtractor(clock=FakeClock())
        with patch("httpx.AsyncClient") as mock_client:
            wire_async_client(
                mock_client,
                get_side_effect=route(
                    primary=httpx.ConnectError("connection refused"),
                    fallback=make_response(200, json_data={"compra": 390.0}),
                ),
            )
            rates = await extractor.scrape()

        assert rates.usd == 390.0

    @pytest.mark.asyncio
    async def test_both_sources_failing_raises_primary_error(self):
        extractor = OfficialRateExtractor(clock=FakeClock())
        with patch("httpx.AsyncClient") as mock_client:
            wire_async_client(
                mock_client,
                get_side_effect=route(
                    primary=make_response(502),
                    fallback=httpx.ReadTimeout("timed out"),
                ),
            )
            with pytest.raises(ExtractionError, match="Official page request failed: 502"):
                await extractor.scrape()

    @pytest.mark.asyncio
    async def test_fallback_without_usd_is_a_failure(self):
        extractor = OfficialRateExtractor(clock=FakeClock())
        with patch("httpx.AsyncClient") as mock_client:
            wire_async_client(
                mock_client,
                get_side_effect=route(
                    primary=make_response(404),
                    fallback=make_response(200, json_data={}),
                ),
            )
            with pytest.raises(ExtractionError, match="404"):
                await extractor.scrape()

    def test_clear_cache(self):
        extractor = OfficialRateExtractor()
        extractor.clear_cache()
        assert extractor.get_cached_rates() is None
