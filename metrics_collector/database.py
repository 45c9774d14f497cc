"""Structured descriptor store backed by parquet tables.

Rows are batched in memory while archives are parsed and merged into one
parquet file per table on :meth:`DescriptorDatabase.close`. Each table has a
key; rows already stored win over new rows with the same key, so importing
the same descriptors twice leaves the tables unchanged.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

import polars as pl

from metrics_collector.consumers import DescriptorConsumer
from metrics_collector.documents import (
    ConnBiDirectStats,
    DirReqStats,
    ExtraInfoRecord,
    NetworkStatus,
    ServerDescriptorRecord,
    StatusEntry,
)

logger = logging.getLogger(__name__)

UTC_DATETIME = pl.Datetime("us", "UTC")

TABLE_SCHEMAS: dict[str, dict[str, Any]] = {
    "status_entries": {
        "validafter": UTC_DATETIME,
        "nickname": pl.Utf8,
        "fingerprint": pl.Utf8,
        "descriptor": pl.Utf8,
        "published": UTC_DATETIME,
        "address": pl.Utf8,
        "orport": pl.Int64,
        "dirport": pl.Int64,
        "flags": pl.List(pl.Utf8),
        "version": pl.Utf8,
        "bandwidth": pl.Int64,
        "ports": pl.Utf8,
        "rawdesc": pl.Binary,
    },
    "consensuses": {
        "validafter": UTC_DATETIME,
        "relays": pl.Int64,
        "dirsources": pl.List(pl.Utf8),
    },
    "votes": {
        "validafter": UTC_DATETIME,
        "dirsource": pl.Utf8,
        "digest": pl.Utf8,
        "relays": pl.Int64,
    },
    "server_descriptors": {
        "descriptor": pl.Utf8,
        "nickname": pl.Utf8,
        "address": pl.Utf8,
        "orport": pl.Int64,
        "dirport": pl.Int64,
        "fingerprint": pl.Utf8,
        "bandwidthavg": pl.Int64,
        "bandwidthburst": pl.Int64,
        "bandwidthobserved": pl.Int64,
        "platform": pl.Utf8,
        "published": UTC_DATETIME,
        "uptime": pl.Int64,
        "extrainfo": pl.Utf8,
        "rawdesc": pl.Binary,
    },
    "extra_info_descriptors": {
        "extrainfo": pl.Utf8,
        "nickname": pl.Utf8,
        "fingerprint": pl.Utf8,
        "published": UTC_DATETIME,
        "history": pl.List(pl.Utf8),
        "rawdesc": pl.Binary,
    },
    "dirreq_stats": {
        "source": pl.Utf8,
        "statsend": pl.Utf8,
        "seconds": pl.Int64,
        "country": pl.Utf8,
        "requests": pl.Int64,
    },
    "conn_bi_direct": {
        "source": pl.Utf8,
        "statsend": pl.Utf8,
        "seconds": pl.Int64,
        "below": pl.Int64,
        "read": pl.Int64,
        "write": pl.Int64,
        "both": pl.Int64,
    },
}

TABLE_KEYS: dict[str, list[str]] = {
    "status_entries": ["validafter", "descriptor"],
    "consensuses": ["validafter"],
    "votes": ["validafter", "dirsource"],
    "server_descriptors": ["descriptor"],
    "extra_info_descriptors": ["extrainfo"],
    "dirreq_stats": ["source", "statsend", "country"],
    "conn_bi_direct": ["source", "statsend"],
}


class DescriptorDatabase(DescriptorConsumer):
    """Batch parse results and merge them into keyed parquet tables."""

    name = "database"

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self.pending: dict[str, list[dict[str, Any]]] = {table: [] for table in TABLE_SCHEMAS}

    def table_path(self, table: str) -> Path:
        return self.directory / f"{table}.parquet"

    # -------------------------------------------------------------------------
    # Hooks
    # -------------------------------------------------------------------------

    def on_status_entry(self, valid_after: datetime, entry: StatusEntry) -> None:
        self.pending["status_entries"].append({
            "validafter": valid_after,
            "nickname": entry.nickname,
            "fingerprint": entry.identity,
            "descriptor": entry.descriptor_digest,
            "published": entry.published,
            "address": entry.address,
            "orport": entry.or_port,
            "dirport": entry.dir_port,
            "flags": sorted(entry.flags) if entry.flags is not None else None,
            "version": entry.version,
            "bandwidth": entry.bandwidth,
            "ports": entry.ports,
            "rawdesc": entry.raw,
        })

    def on_consensus(self, status: NetworkStatus) -> None:
        if status.valid_after is None:
            return
        self.pending["consensuses"].append({
            "validafter": status.valid_after,
            "relays": len(status.entries),
            "dirsources": list(status.dir_sources),
        })

    def on_vote(self, status: NetworkStatus) -> None:
        if status.valid_after is None or status.vote_dir_source is None:
            return
        self.pending["votes"].append({
            "validafter": status.valid_after,
            "dirsource": status.vote_dir_source,
            "digest": status.signed_digest,
            "relays": len(status.entries),
        })

    def on_server_descriptor(self, record: ServerDescriptorRecord) -> None:
        self.pending["server_descriptors"].append({
            "descriptor": record.digest,
            "nickname": record.nickname,
            "address": record.address,
            "orport": record.or_port,
            "dirport": record.dir_port,
            "fingerprint": record.fingerprint,
            "bandwidthavg": record.bandwidth_avg,
            "bandwidthburst": record.bandwidth_burst,
            "bandwidthobserved": record.bandwidth_observed,
            "platform": record.platform,
            "published": record.published,
            "uptime": record.uptime,
            "extrainfo": record.extra_info_digest,
            "rawdesc": record.raw,
        })

    def on_extra_info(self, record: ExtraInfoRecord) -> None:
        self.pending["extra_info_descriptors"].append({
            "extrainfo": record.digest,
            "nickname": record.nickname,
            "fingerprint": record.fingerprint,
            "published": record.published,
            "history": list(record.bandwidth_history),
            "rawdesc": record.raw,
        })

    def on_dirreq_stats(self, stats: DirReqStats) -> None:
        for country, requests in stats.users.items():
            self.pending["dirreq_stats"].append({
                "source": stats.source,
                "statsend": stats.stats_end,
                "seconds": stats.seconds,
                "country": country,
                "requests": requests,
            })

    def on_conn_bi_direct(self, stats: ConnBiDirectStats) -> None:
        self.pending["conn_bi_direct"].append({
            "source": stats.source,
            "statsend": stats.stats_end,
            "seconds": stats.seconds,
            "below": stats.below,
            "read": stats.read,
            "write": stats.write,
            "both": stats.both,
        })

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Merge every non-empty batch into its table; one failing table does not stop the others."""
        for table, rows in self.pending.items():
            if not rows:
                continue
            try:
                written = self._merge_table(table, rows)
            except (OSError, pl.exceptions.PolarsError) as exc:
                logger.warning("Could not write %s table to %s: %s", table, self.table_path(table), exc)
                continue
            logger.info("Database table %s now holds %s rows (%d new candidates).", table, f"{written:,}", len(rows))
            rows.clear()

    def _merge_table(self, table: str, rows: list[dict[str, Any]]) -> int:
        schema = TABLE_SCHEMAS[table]
        new = pl.DataFrame(rows, schema=schema)
        path = self.table_path(table)

        if path.exists():
            existing = pl.read_parquet(path)
            combined = pl.concat([existing, new], how="vertical_relaxed")
        else:
            combined = new

        # Rows already stored come first and win on duplicate keys
        combined = combined.unique(subset=TABLE_KEYS[table], keep="first", maintain_order=True).sort(TABLE_KEYS[table])

        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(path.name + ".tmp")
        combined.write_parquet(tmp)
        tmp.replace(path)
        return combined.height
