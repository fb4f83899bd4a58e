"""Error kinds raised by the Muse driver."""

from __future__ import annotations


class MuseError(Exception):
    """Base class for all driver errors."""


class TransportUnavailable(MuseError):
    """Discovery, link or essential write failed. Fatal to ``connect()``."""


class OptionalEndpointUnavailable(MuseError):
    """A non-essential characteristic could not be subscribed."""

    def __init__(self, endpoint: str, reason: object = None):
        self.endpoint = endpoint
        self.reason = reason
        msg = f"optional endpoint {endpoint} unavailable"
        if reason is not None:
            msg += f": {reason}"
        super().__init__(msg)


class MalformedControlFragment(MuseError):
    """A control-channel fragment closed with ``}`` but was not valid JSON."""

    def __init__(self, fragment: str):
        self.fragment = fragment
        super().__init__(f"malformed control fragment: {fragment!r}")


class MockDataUnavailable(MuseError):
    """The mock recording could not be loaded. Fatal to ``connect()``."""


class ModelDetectionTimeout(MuseError):
    """No identifying control data arrived in time; baseline model assumed."""
