"""Upstream source descriptors, their response parsers and the registry."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Callable, Iterable, Optional

from market_feed.models.market_data import FALLBACK_SOURCE_NAME, PriceRecord
from market_feed.services.errors import InvalidResponse, UnknownSourceError
from market_feed.utils.config import MarketDataConfig, SourceConfig

FALLBACK_PRIORITY = 999


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ResponseParser(ABC):
    """Turns one upstream JSON payload into a PriceRecord."""

    source_name: str

    def __init__(self, now: Callable[[], datetime] = _utcnow):
        self._now = now

    @abstractmethod
    def parse(self, payload: Any) -> PriceRecord:
        """
        Parse a decoded JSON payload.

        Raises:
            InvalidResponse: if a required numeric field is missing or malformed
        """

    def _require_number(self, value: Any, field_name: str) -> float:
        if not _is_number(value):
            raise InvalidResponse(self.source_name, f"missing or non-numeric field '{field_name}'")
        return self._to_float(value, field_name)

    def _optional_number(
        self, value: Any, field_name: str, default: Optional[float] = 0.0
    ) -> Optional[float]:
        return self._to_float(value, field_name) if _is_number(value) else default

    def _to_float(self, value: Any, field_name: str) -> float:
        # JSON integers are unbounded; float() overflows past ~1.8e308
        try:
            return float(value)
        except OverflowError as e:
            raise InvalidResponse(self.source_name, f"field '{field_name}' out of range") from e

    def _epoch_timestamp(self, value: Any, field_name: str) -> datetime:
        """Epoch seconds to an aware datetime, or now when the field is absent."""
        if not _is_number(value):
            return self._now()
        try:
            return datetime.fromtimestamp(value, UTC)
        except (OverflowError, OSError, ValueError) as e:
            raise InvalidResponse(self.source_name, f"bad {field_name} '{value}'") from e

    def _build(self, **fields) -> PriceRecord:
        if fields["price"] <= 0:
            raise InvalidResponse(self.source_name, f"non-positive price {fields['price']}")
        try:
            return PriceRecord(source=self.source_name, **fields)
        except ValueError as e:
            raise InvalidResponse(self.source_name, str(e)) from e


class CoinGeckoParser(ResponseParser):
    """Parses ``/simple/price`` responses keyed by the CoinGecko asset id."""

    source_name = "CoinGecko"

    def __init__(self, asset_id: str, quote_currency: str, now: Callable[[], datetime] = _utcnow):
        super().__init__(now)
        self.asset_id = asset_id
        self.quote = quote_currency.lower()

    def parse(self, payload: Any) -> PriceRecord:
        asset = payload.get(self.asset_id) if isinstance(payload, dict) else None
        if not isinstance(asset, dict):
            raise InvalidResponse(self.source_name, f"asset '{self.asset_id}' not in response")

        price = self._require_number(asset.get(self.quote), self.quote)
        q = self.quote
        return self._build(
            price=price,
            observed_at=self._epoch_timestamp(asset.get("last_updated_at"), "last_updated_at"),
            change_24h=self._optional_number(asset.get(f"{q}_24h_change"), f"{q}_24h_change"),
            change_7d=self._optional_number(asset.get(f"{q}_7d_change"), f"{q}_7d_change", None),
            market_cap=self._optional_number(asset.get(f"{q}_market_cap"), f"{q}_market_cap"),
            volume_24h=self._optional_number(asset.get(f"{q}_24h_vol"), f"{q}_24h_vol"),
        )


class CoinMarketCapParser(ResponseParser):
    """Parses ``/cryptocurrency/quotes/latest`` responses."""

    source_name = "CoinMarketCap"

    def __init__(self, asset_symbol: str, quote_currency: str, now: Callable[[], datetime] = _utcnow):
        super().__init__(now)
        self.symbol = asset_symbol.upper()
        self.quote = quote_currency.upper()

    def parse(self, payload: Any) -> PriceRecord:
        data = payload.get("data") if isinstance(payload, dict) else None
        asset = data.get(self.symbol) if isinstance(data, dict) else None
        # v1 returns an object per symbol, v2 a list of matches
        if isinstance(asset, list):
            asset = asset[0] if asset else None
        if not isinstance(asset, dict):
            raise InvalidResponse(self.source_name, f"symbol '{self.symbol}' not in response")

        quote = (asset.get("quote") or {}).get(self.quote)
        if not isinstance(quote, dict):
            raise InvalidResponse(self.source_name, f"no {self.quote} quote in response")

        price = self._require_number(quote.get("price"), "price")
        return self._build(
            price=price,
            observed_at=self._parse_timestamp(quote.get("last_updated")),
            change_24h=self._optional_number(quote.get("percent_change_24h"), "percent_change_24h"),
            change_7d=self._optional_number(quote.get("percent_change_7d"), "percent_change_7d", None),
            market_cap=self._optional_number(quote.get("market_cap"), "market_cap"),
            volume_24h=self._optional_number(quote.get("volume_24h"), "volume_24h"),
        )

    def _parse_timestamp(self, value: Any) -> datetime:
        if not isinstance(value, str):
            return self._now()
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise InvalidResponse(self.source_name, f"bad last_updated '{value}'") from e


class CryptoCompareParser(ResponseParser):
    """Parses ``/data/pricemultifull`` responses. The free tier has no 7-day change."""

    source_name = "CryptoCompare"

    def __init__(self, asset_symbol: str, quote_currency: str, now: Callable[[], datetime] = _utcnow):
        super().__init__(now)
        self.symbol = asset_symbol.upper()
        self.quote = quote_currency.upper()

    def parse(self, payload: Any) -> PriceRecord:
        raw = payload.get("RAW") if isinstance(payload, dict) else None
        raw = (raw or {}).get(self.symbol) if isinstance(raw, dict) else None
        raw = (raw or {}).get(self.quote) if isinstance(raw, dict) else None
        if not isinstance(raw, dict):
            raise InvalidResponse(self.source_name, f"no RAW.{self.symbol}.{self.quote} in response")

        price = self._require_number(raw.get("PRICE"), "PRICE")
        return self._build(
            price=price,
            observed_at=self._epoch_timestamp(raw.get("LASTUPDATE"), "LASTUPDATE"),
            change_24h=self._optional_number(raw.get("CHANGEPCT24HOUR"), "CHANGEPCT24HOUR"),
            change_7d=None,
            market_cap=self._optional_number(raw.get("MKTCAP"), "MKTCAP"),
            volume_24h=self._optional_number(raw.get("TOTALVOLUME24HTO"), "TOTALVOLUME24HTO"),
        )


class FallbackParser(ResponseParser):
    """Constant price used when every real source failed. Never raises."""

    source_name = FALLBACK_SOURCE_NAME

    def __init__(self, fallback_price: float, now: Callable[[], datetime] = _utcnow):
        super().__init__(now)
        self.fallback_price = fallback_price

    def parse(self, payload: Any = None) -> PriceRecord:
        return PriceRecord(
            price=self.fallback_price,
            observed_at=self._now(),
            change_24h=0.0,
            change_7d=0.0,
            market_cap=0.0,
            volume_24h=0.0,
            source=self.source_name,
        )


@dataclass
class SourceDescriptor:
    """Static configuration for one upstream source."""

    name: str
    locator: str
    parser: ResponseParser
    requests_per_minute: Optional[int]
    priority: int
    headers: dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if self.is_fallback:
            return
        if self.requests_per_minute is None or self.requests_per_minute <= 0:
            raise ValueError(f"Source {self.name} needs a positive requests_per_minute")

    @property
    def is_fallback(self) -> bool:
        return isinstance(self.parser, FallbackParser)


class SourceRegistry:
    """Ordered upstream sources terminated by exactly one fallback source."""

    def __init__(self, fallback: SourceDescriptor, sources: Iterable[SourceDescriptor] = ()):
        if not fallback.is_fallback:
            raise ValueError("The terminal source must use a FallbackParser")
        self.fallback = fallback
        self._sources: list[SourceDescriptor] = []
        for source in sources:
            self.register(source)

    def register(self, source: SourceDescriptor) -> None:
        """
        Append a real source.

        Raises:
            ValueError: for a second fallback, a duplicate name, or a priority
                that would not sort before the fallback
        """
        if source.is_fallback:
            raise ValueError("The registry already has a fallback source")
        if source.name in self.names():
            raise ValueError(f"Source {source.name} is already registered")
        if source.priority >= self.fallback.priority:
            raise ValueError(
                f"Source {source.name} priority {source.priority} must be below "
                f"the fallback priority {self.fallback.priority}"
            )
        self._sources.append(source)

    def ordered(self) -> list[SourceDescriptor]:
        """Real sources by ascending priority (stable on ties), then the fallback."""
        return sorted(self._sources, key=lambda s: s.priority) + [self.fallback]

    def get(self, name: str) -> SourceDescriptor:
        """
        Look up a source by name.

        Raises:
            UnknownSourceError: if no source has that name
        """
        for source in self.ordered():
            if source.name == name:
                return source
        raise UnknownSourceError(name)

    def names(self) -> list[str]:
        return [source.name for source in self._sources] + [self.fallback.name]

    def __len__(self) -> int:
        return len(self._sources) + 1


def build_default_registry(market: MarketDataConfig, sources: SourceConfig) -> SourceRegistry:
    """
    Build the CoinGecko, CoinMarketCap, CryptoCompare and fallback sources
    for the configured trading pair.

    CoinMarketCap rejects every keyless request, so it is only registered
    when an API key is configured.
    """
    quote_lower = market.quote_currency.lower()
    quote_upper = market.quote_currency.upper()
    symbol = market.asset_symbol.upper()

    registry = SourceRegistry(
        fallback=SourceDescriptor(
            name=FALLBACK_SOURCE_NAME,
            locator="",
            parser=FallbackParser(market.fallback_price),
            requests_per_minute=None,
            priority=FALLBACK_PRIORITY,
        )
    )
    registry.register(
        SourceDescriptor(
            name=CoinGeckoParser.source_name,
            locator=(
                "https://api.coingecko.com/api/v3/simple/price"
                f"?ids={market.asset_id}&vs_currencies={quote_lower}"
                "&include_24hr_change=true&include_market_cap=true"
                "&include_24hr_vol=true&include_7d_change=true&include_last_updated_at=true"
            ),
            parser=CoinGeckoParser(market.asset_id, market.quote_currency),
            requests_per_minute=sources.coingecko_rate_limit,
            priority=1,
        )
    )
    if sources.coinmarketcap_api_key:
        registry.register(
            SourceDescriptor(
                name=CoinMarketCapParser.source_name,
                locator=(
                    "https://pro-api.coinmarketcap.com/v1/cryptocurrency/quotes/latest"
                    f"?symbol={symbol}&convert={quote_upper}"
                ),
                parser=CoinMarketCapParser(symbol, quote_upper),
                requests_per_minute=sources.coinmarketcap_rate_limit,
                priority=2,
                headers={"X-CMC_PRO_API_KEY": sources.coinmarketcap_api_key},
            )
        )
    registry.register(
        SourceDescriptor(
            name=CryptoCompareParser.source_name,
            locator=(
                "https://min-api.cryptocompare.com/data/pricemultifull"
                f"?fsyms={symbol}&tsyms={quote_upper}"
            ),
            parser=CryptoCompareParser(symbol, quote_upper),
            requests_per_minute=sources.cryptocompare_rate_limit,
            priority=3,
        )
    )
    return registry
