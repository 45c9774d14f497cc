"""Decode single lines of Torperf ``.data`` and ``.extradata`` files.

A ``.data`` line is a fixed sequence of space-separated tokens: pairs of
whole seconds and microseconds for each measured event, followed by byte
counts and an optional timeout flag. An ``.extradata`` line is a list of
``key=value`` tokens.
"""

from __future__ import annotations

# Token offset of the seconds part of each timestamp; the microseconds
# part follows at offset + 1.
DATA_TIMESTAMP_OFFSETS: dict[int, str] = {
    0: "START",
    2: "SOCKET",
    4: "CONNECT",
    6: "NEGOTIATE",
    8: "REQUEST",
    10: "RESPONSE",
    12: "DATAREQUEST",
    14: "DATARESPONSE",
    16: "DATACOMPLETE",
    21: "DATAPERC10",
    23: "DATAPERC20",
    25: "DATAPERC30",
    27: "DATAPERC40",
    29: "DATAPERC50",
    31: "DATAPERC60",
    33: "DATAPERC70",
    35: "DATAPERC80",
    37: "DATAPERC90",
}

WRITEBYTES_OFFSET = 18
READBYTES_OFFSET = 19
DIDTIMEOUT_OFFSET = 20
MIN_DATA_TOKENS = 20

STREAM_FAIL_REASONS = "STREAM_FAIL_REASONS"
CONTINUATION_REASONS = frozenset({"MISC", "EXITPOLICY", "RESOURCELIMIT", "RESOLVEFAILED"})

SKIPPED_EXTRADATA_PREFIXES = ("BUILDTIMEOUT_SET ", "ok ", "error ")


def format_timestamp(seconds: str, micros: str) -> str:
    """Render ``<seconds>.<hundredths>``, truncating the microseconds.

    Raises ValueError if either part is not an integer.
    """
    int(seconds)
    return f"{seconds}.{int(micros) // 10000:02d}"


def parse_data_line(line: str) -> dict[str, str] | None:
    """Parse a ``.data`` line; None if it is too short or not numeric."""
    parts = line.strip().split(" ")
    if not line or len(parts) < MIN_DATA_TOKENS:
        return None
    data: dict[str, str] = {}
    try:
        for offset, key in DATA_TIMESTAMP_OFFSETS.items():
            if len(parts) > offset + 1:
                data[key] = format_timestamp(parts[offset], parts[offset + 1])
    except ValueError:
        return None
    data["WRITEBYTES"] = parts[WRITEBYTES_OFFSET]
    data["READBYTES"] = parts[READBYTES_OFFSET]
    if len(parts) > DIDTIMEOUT_OFFSET:
        data["DIDTIMEOUT"] = parts[DIDTIMEOUT_OFFSET]
    return data


def _pad_float(value: str) -> str:
    # Floats with one decimal digit get a second one
    if "." in value and value.rindex(".") == len(value) - 2:
        return value + "0"
    return value


def parse_extradata_line(line: str) -> dict[str, str] | None:
    """Parse a ``.extradata`` line; None if any token is malformed.

    A bare token directly following ``STREAM_FAIL_REASONS=...`` is a further
    failure reason and gets joined with a colon.
    """
    extradata: dict[str, str] = {}
    previous_key: str | None = None
    for part in line.rstrip(" ").split(" "):
        key_and_value = part.split("=")
        if len(key_and_value) == 2:
            key, value = key_and_value
            previous_key = key
            extradata[key] = _pad_float(value)
        elif len(key_and_value) == 1 and previous_key is not None:
            if previous_key == STREAM_FAIL_REASONS and part in CONTINUATION_REASONS:
                extradata[previous_key] = f"{extradata[previous_key]}:{part}"
            else:
                return None
        else:
            return None
    return extradata


def is_skipped_extradata_line(line: str) -> bool:
    """Lines in the old format and circuit build timeout lines carry no measurement."""
    return line.startswith(SKIPPED_EXTRADATA_PREFIXES)
