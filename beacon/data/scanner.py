"""
Periodic anomaly scanning.

Probes are polled on a schedule and whatever signals they return are fed
into the same ``on_signal`` entry point used by real-time producers.
"""

import logging
from typing import Any, Callable, Iterable, Union

import requests

from beacon.data.signal import Signal

logger = logging.getLogger(__name__)

SignalPayload = Union[Signal, dict[str, Any]]
Probe = Callable[[], Iterable[SignalPayload]]


class HttpFeedProbe:
    """Polls an HTTP endpoint returning a JSON list of signals."""

    def __init__(self, url: str, timeout: float = 10.0):
        """
        Initialize feed probe.

        Args:
            url: Endpoint returning ``[...]`` or ``{"signals": [...]}``
            timeout: Request timeout in seconds
        """
        self.url = url
        self.timeout = timeout

    def __call__(self) -> list[dict[str, Any]]:
        response = requests.get(self.url, timeout=self.timeout)
        response.raise_for_status()
        body = response.json()
        if isinstance(body, dict):
            body = body.get("signals", [])
        if not isinstance(body, list):
            raise ValueError(f"Unexpected feed payload from {self.url}")
        return body


class AnomalyScanner:
    """Runs registered probes and forwards their signals."""

    def __init__(self, on_signal: Callable[[SignalPayload], Any]):
        self.on_signal = on_signal
        self.probes: dict[str, Probe] = {}

    def register(self, name: str, probe: Probe) -> None:
        self.probes[name] = probe

    def scan(self) -> int:
        """
        Run every probe once.

        A failing probe is logged and skipped; the others still run.

        Returns:
            Number of signals forwarded
        """
        forwarded = 0
        for name, probe in self.probes.items():
            try:
                signals = list(probe())
            except Exception as e:
                logger.error(f"Anomaly probe {name} failed: {e}")
                continue

            for signal in signals:
                self.on_signal(signal)
                forwarded += 1

            if signals:
                logger.info(f"Anomaly probe {name} produced {len(signals)} signals")

        return forwarded
