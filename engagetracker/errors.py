"""Error kinds shared by the store, the aggregator and the broadcast hub.

Not-found outcomes are not exceptions: aggregator reads return ``None`` and
the API layer turns that into a 404. Malformed input is rejected by the
request models before it reaches the core.
"""

from __future__ import annotations


class StorageUnavailable(RuntimeError):
    """The database could not be reached or refused the operation."""


class DeliveryFailure(RuntimeError):
    """A single realtime send failed. Caught inside the hub, never propagated."""

    def __init__(self, message: str, connection_id: int | None = None) -> None:
        super().__init__(message)
        self.connection_id = connection_id
