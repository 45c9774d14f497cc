"""Content digests over signed byte ranges of raw descriptors.

Marker offsets are found in one forward pass over the raw bytes. A range is
only digested when both markers are present and the end marker starts after
the start marker; otherwise no digest is produced and the caller decides how
to log and dispatch.
"""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterable

NETWORK_STATUS_START = b"network-status-version "
DIRECTORY_SIGNATURE = b"directory-signature "
SERVER_DESCRIPTOR_START = b"router "
EXTRA_INFO_START = b"extra-info "
ROUTER_SIGNATURE = b"\nrouter-signature\n"


def scan_markers(data: bytes, markers: Iterable[bytes]) -> dict[bytes, int]:
    """Return the first offset of each marker, scanning ``data`` once.

    Markers that never occur are absent from the result.
    """
    pending = sorted({m for m in markers if m}, key=len, reverse=True)
    if not pending:
        return {}
    # Zero-width lookahead, so overlapping markers are all seen
    pattern = re.compile(b"(?=" + b"|".join(re.escape(m) for m in pending) + b")")

    found: dict[bytes, int] = {}
    for match in pattern.finditer(data):
        offset = match.start()
        for marker in pending:
            if marker not in found and data.startswith(marker, offset):
                found[marker] = offset
        if len(found) == len(pending):
            break
    return found


def signed_range(data: bytes, start_token: bytes, end_token: bytes) -> tuple[int, int] | None:
    """Locate ``[start, end)`` from ``start_token`` to just past ``end_token``.

    Returns None when either marker is missing or the end marker does not
    begin after the start marker.
    """
    offsets = scan_markers(data, (start_token, end_token))
    start = offsets.get(start_token)
    sig = offsets.get(end_token)
    if start is None or sig is None or sig <= start:
        return None
    return start, sig + len(end_token)


def sha1_hex(data: bytes, start: int = 0, end: int | None = None, *, upper: bool = False) -> str:
    digest = hashlib.sha1(data[start:end]).hexdigest()
    return digest.upper() if upper else digest


def vote_digest(data: bytes) -> str | None:
    """Upper-case SHA1 over a vote's signed section, or None without markers."""
    bounds = signed_range(data, NETWORK_STATUS_START, DIRECTORY_SIGNATURE)
    if bounds is None:
        return None
    return sha1_hex(data, *bounds, upper=True)


def descriptor_digest(data: bytes, start_token: bytes) -> str | None:
    """Lower-case SHA1 over a server or extra-info descriptor's signed section."""
    bounds = signed_range(data, start_token, ROUTER_SIGNATURE)
    if bounds is None:
        return None
    return sha1_hex(data, *bounds)


def hashed_identity(decoded_identity: bytes) -> str:
    """Upper-case SHA1 of a relay's raw identity bytes."""
    return sha1_hex(decoded_identity, upper=True)
