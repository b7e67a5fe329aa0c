"""
Signal model emitted by analysis feeds.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class SignalValidationError(ValueError):
    """Raised when an incoming signal payload is malformed."""

    pass


class SignalKind(str, Enum):
    """Kinds of signals produced by the feeds."""

    PRICE = "price"
    SENTIMENT = "sentiment"
    NARRATIVE = "narrative"
    VOLUME = "volume"
    NEWS = "news"


@dataclass(frozen=True)
class SignalSource:
    """
    Evidence attached to a signal.

    Social/news sources carry ``platform`` and ``mention_count``; price
    sources carry ``price_change`` (percent), ``current_price`` and
    ``previous_price``.
    """

    platform: Optional[str] = None
    mention_count: Optional[int] = None
    price_change: Optional[float] = None
    current_price: Optional[float] = None
    previous_price: Optional[float] = None
    timeframe: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SignalSource":
        """Build a source from a wire (camelCase) or snake_case mapping."""
        if not isinstance(data, dict):
            raise SignalValidationError(f"Signal source must be a mapping, got {type(data).__name__}")

        def pick(*keys: str) -> Any:
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return None

        try:
            mention_count = pick("mentionCount", "mention_count", "count")
            price_change = pick("priceChange", "price_change")
            current_price = pick("currentPrice", "current_price")
            previous_price = pick("previousPrice", "previous_price")
            source = cls(
                platform=pick("originPlatform", "platform"),
                mention_count=int(mention_count) if mention_count is not None else None,
                price_change=float(price_change) if price_change is not None else None,
                current_price=float(current_price) if current_price is not None else None,
                previous_price=float(previous_price) if previous_price is not None else None,
                timeframe=pick("timeframe"),
            )
        except (TypeError, ValueError) as e:
            raise SignalValidationError(f"Invalid signal source: {e}") from e

        # A bare price triple implies the price platform
        if source.platform is None and source.price_change is not None:
            source = SignalSource(
                platform="price",
                mention_count=source.mention_count,
                price_change=source.price_change,
                current_price=source.current_price,
                previous_price=source.previous_price,
                timeframe=source.timeframe,
            )
        return source

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire format, dropping empty fields."""
        data = {
            "originPlatform": self.platform,
            "mentionCount": self.mention_count,
            "priceChange": self.price_change,
            "currentPrice": self.current_price,
            "previousPrice": self.previous_price,
            "timeframe": self.timeframe,
        }
        return {k: v for k, v in data.items() if v is not None}


@dataclass(frozen=True)
class Signal:
    """Immutable, timestamped fact about an asset."""

    asset_symbol: str
    kind: SignalKind
    strength: int
    description: str = ""
    sources: tuple[SignalSource, ...] = field(default_factory=tuple)
    timestamp: datetime = field(default_factory=datetime.now)
    id: Optional[str] = None
    asset_name: Optional[str] = None

    def __post_init__(self):
        if not self.asset_symbol or not str(self.asset_symbol).strip():
            raise SignalValidationError("Signal asset symbol is required")
        if not isinstance(self.kind, SignalKind):
            try:
                object.__setattr__(self, "kind", SignalKind(self.kind))
            except ValueError as e:
                raise SignalValidationError(f"Unknown signal kind: {self.kind}") from e
        if isinstance(self.strength, bool) or not isinstance(self.strength, (int, float)):
            raise SignalValidationError(f"Signal strength must be numeric, got {self.strength!r}")
        if not 0 <= self.strength <= 100:
            raise SignalValidationError(f"Signal strength out of range 0-100: {self.strength}")
        object.__setattr__(self, "asset_symbol", str(self.asset_symbol).strip().upper())
        object.__setattr__(self, "sources", tuple(self.sources))

    @property
    def price_source(self) -> Optional[SignalSource]:
        """First source carrying a price change."""
        for source in self.sources:
            if source.price_change is not None:
                return source
        return None

    @property
    def price_change(self) -> Optional[float]:
        """Percentage change carried by the first price source, if any."""
        source = self.price_source
        return source.price_change if source else None

    @property
    def direction(self) -> Optional[str]:
        """"up" or "down" from the embedded price change; None when not price-bearing."""
        change = self.price_change
        if change is None:
            return None
        return "up" if change >= 0 else "down"

    @property
    def mention_count(self) -> int:
        """Total mentions across social/news sources."""
        return sum(s.mention_count or 0 for s in self.sources)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Signal":
        """
        Parse a signal payload from a feed producer.

        Args:
            data: Mapping with camelCase or snake_case keys

        Returns:
            Signal instance

        Raises:
            SignalValidationError: If required fields are missing or invalid
        """
        if not isinstance(data, dict):
            raise SignalValidationError(f"Signal payload must be a mapping, got {type(data).__name__}")

        asset_symbol = data.get("assetSymbol", data.get("asset_symbol"))
        kind = data.get("kind", data.get("type"))
        strength = data.get("strength")
        missing = [
            name
            for name, value in (
                ("assetSymbol", asset_symbol),
                ("kind", kind),
                ("strength", strength),
            )
            if value is None
        ]
        if missing:
            raise SignalValidationError(f"Signal missing required fields: {', '.join(missing)}")

        raw_sources = data.get("sources") or []
        if not isinstance(raw_sources, (list, tuple)):
            raise SignalValidationError("Signal sources must be a list")
        sources = tuple(SignalSource.from_dict(s) for s in raw_sources)

        timestamp = data.get("timestamp")
        if timestamp is None:
            timestamp = datetime.now()
        elif isinstance(timestamp, str):
            try:
                timestamp = datetime.fromisoformat(timestamp.replace("Z", "+00:00"))
            except ValueError as e:
                raise SignalValidationError(f"Invalid signal timestamp: {timestamp}") from e
        elif not isinstance(timestamp, datetime):
            raise SignalValidationError(f"Invalid signal timestamp: {timestamp!r}")

        return cls(
            asset_symbol=asset_symbol,
            kind=kind,
            strength=strength,
            description=data.get("description") or "",
            sources=sources,
            timestamp=timestamp,
            id=data.get("id"),
            asset_name=data.get("assetName", data.get("asset_name")),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire format."""
        return {
            "id": self.id,
            "assetSymbol": self.asset_symbol,
            "assetName": self.asset_name,
            "kind": self.kind.value,
            "strength": self.strength,
            "description": self.description,
            "sources": [s.to_dict() for s in self.sources],
            "timestamp": self.timestamp.isoformat(),
        }
