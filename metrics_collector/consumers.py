"""Downstream consumers of parse results and the fan-out that notifies them.

Every sink subclasses :class:`DescriptorConsumer` and overrides only the
hooks it cares about. :class:`ConsumerFanout` calls each present consumer in
order and isolates failures, so a broken sink never keeps the others (or the
parser) from seeing a document.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from metrics_collector.documents import (
    ConnBiDirectStats,
    DirReqStats,
    ExtraInfoRecord,
    NetworkStatus,
    ServerDescriptorRecord,
    StatusEntry,
)

logger = logging.getLogger(__name__)


class DescriptorConsumer:
    """No-op base class for parse result sinks."""

    name = "consumer"

    def on_consensus(self, status: NetworkStatus) -> None:
        pass

    def on_vote(self, status: NetworkStatus) -> None:
        pass

    def on_status_entry(self, valid_after: datetime, entry: StatusEntry) -> None:
        pass

    def on_hashed_relay_identities(self, valid_after: datetime, identities: frozenset[str]) -> None:
        pass

    def on_server_descriptor(self, record: ServerDescriptorRecord) -> None:
        pass

    def on_extra_info(self, record: ExtraInfoRecord) -> None:
        pass

    def on_dirreq_stats(self, stats: DirReqStats) -> None:
        pass

    def on_conn_bi_direct(self, stats: ConnBiDirectStats) -> None:
        pass

    def close(self) -> None:
        pass


class ConsumerFanout:
    """Ordered set of consumers notified for every parse event."""

    def __init__(self, consumers: Iterable[DescriptorConsumer] = ()) -> None:
        self.consumers: list[DescriptorConsumer] = [c for c in consumers if c is not None]

    @classmethod
    def from_sinks(
        cls,
        *,
        archive: DescriptorConsumer | None = None,
        database: DescriptorConsumer | None = None,
        stats: DescriptorConsumer | None = None,
        inventory: DescriptorConsumer | None = None,
        health: DescriptorConsumer | None = None,
    ) -> ConsumerFanout:
        """Archive first, then database, then stats/inventory/health."""
        return cls([archive, database, stats, inventory, health])  # type: ignore[list-item]

    def __len__(self) -> int:
        return len(self.consumers)

    def _notify(self, hook: str, *args: object) -> None:
        for consumer in self.consumers:
            try:
                getattr(consumer, hook)(*args)
            except Exception:
                logger.warning(
                    "Consumer %s failed in %s. Continuing with remaining consumers.",
                    consumer.name,
                    hook,
                    exc_info=True,
                )

    def consensus(self, status: NetworkStatus) -> None:
        self._notify("on_consensus", status)

    def vote(self, status: NetworkStatus) -> None:
        self._notify("on_vote", status)

    def status_entry(self, valid_after: datetime, entry: StatusEntry) -> None:
        self._notify("on_status_entry", valid_after, entry)

    def hashed_relay_identities(self, valid_after: datetime, identities: frozenset[str]) -> None:
        self._notify("on_hashed_relay_identities", valid_after, identities)

    def server_descriptor(self, record: ServerDescriptorRecord) -> None:
        self._notify("on_server_descriptor", record)

    def extra_info(self, record: ExtraInfoRecord) -> None:
        self._notify("on_extra_info", record)

    def dirreq_stats(self, stats: DirReqStats) -> None:
        self._notify("on_dirreq_stats", stats)

    def conn_bi_direct(self, stats: ConnBiDirectStats) -> None:
        self._notify("on_conn_bi_direct", stats)

    def close(self) -> None:
        self._notify("close")
