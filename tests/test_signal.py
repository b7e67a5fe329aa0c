"""
Signal model tests.
Tests for signal parsing and validation at ingestion.
"""

from datetime import datetime

import pytest

from beacon.data.signal import Signal, SignalKind, SignalSource, SignalValidationError


class TestSignalFromDict:
    """Test parsing feed payloads."""

    def test_parse_camel_case_payload(self):
        """Should parse the wire format."""
        signal = Signal.from_dict(
            {
                "assetSymbol": "btc",
                "kind": "price",
                "strength": 72,
                "sources": [{"priceChange": 6.2, "currentPrice": 65000, "previousPrice": 61200}],
                "timestamp": "2024-03-01T12:00:00Z",
            }
        )

        assert signal.asset_symbol == "BTC"
        assert signal.kind == SignalKind.PRICE
        assert signal.price_change == 6.2
        assert signal.direction == "up"
        assert signal.sources[0].platform == "price"
        assert signal.timestamp.year == 2024

    def test_parse_snake_case_payload(self):
        """Should accept snake_case keys."""
        signal = Signal.from_dict(
            {
                "asset_symbol": "ETH",
                "kind": "sentiment",
                "strength": 40,
                "sources": [{"platform": "twitter", "mention_count": 120}],
            }
        )

        assert signal.asset_symbol == "ETH"
        assert signal.mention_count == 120
        assert signal.direction is None

    def test_missing_fields_reported_together(self):
        """Should list every missing required field."""
        with pytest.raises(SignalValidationError) as exc_info:
            Signal.from_dict({"description": "no identity"})

        message = str(exc_info.value)
        assert "assetSymbol" in message
        assert "kind" in message
        assert "strength" in message

    def test_unknown_kind(self):
        """Should reject an unknown kind."""
        with pytest.raises(SignalValidationError):
            Signal.from_dict({"assetSymbol": "BTC", "kind": "astrology", "strength": 50})

    def test_strength_out_of_range(self):
        """Should reject strength above 100."""
        with pytest.raises(SignalValidationError):
            Signal.from_dict({"assetSymbol": "BTC", "kind": "news", "strength": 101})

    def test_bad_timestamp(self):
        """Should reject unparseable timestamps."""
        with pytest.raises(SignalValidationError):
            Signal.from_dict(
                {"assetSymbol": "BTC", "kind": "news", "strength": 50, "timestamp": "yesterday"}
            )

    def test_non_mapping_payload(self):
        """Should reject payloads that are not mappings."""
        with pytest.raises(SignalValidationError):
            Signal.from_dict(["BTC", "price"])

    def test_validation_error_is_value_error(self):
        """Should be catchable as ValueError."""
        assert issubclass(SignalValidationError, ValueError)


class TestSignal:
    """Test Signal behaviour."""

    def test_signal_is_immutable(self):
        """Should not allow mutation."""
        signal = Signal(asset_symbol="BTC", kind=SignalKind.NEWS, strength=50)
        with pytest.raises(Exception):
            signal.strength = 10

    def test_negative_change_points_down(self):
        """Should derive direction from the price change sign."""
        signal = Signal(
            asset_symbol="SOL",
            kind=SignalKind.PRICE,
            strength=50,
            sources=(SignalSource(price_change=-7.5),),
        )
        assert signal.direction == "down"

    def test_to_dict_round_trips_identity(self):
        """Should serialize kind and symbol in wire form."""
        timestamp = datetime(2024, 3, 1, 9, 30)
        data = Signal(
            asset_symbol="btc", kind="volume", strength=80, timestamp=timestamp, id="sig-1"
        ).to_dict()

        assert data["assetSymbol"] == "BTC"
        assert data["kind"] == "volume"
        assert data["id"] == "sig-1"
        assert data["timestamp"] == "2024-03-01T09:30:00"
