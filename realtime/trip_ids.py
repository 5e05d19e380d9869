"""
Alternate lookup keys for an operator trip_id.

The static GTFS export and the GTFS-RT feed identify the same trip with
different strings.  In the observed format a trip_id reads

    prefix_serviceCode_line_variant_HHMMSS      e.g. "1306_1000002_B_5_144800"

where the leading prefix is a calendar/version code that differs between the
two sources.  Three keys are derived, from strictest to loosest:

  raw         the id itself
  normalized  the id with its first "_" segment removed
  fuzzy       serviceCode_line_<start time rounded down to 5 minutes>

Ids that don't follow the format simply yield no parsed components and no
fuzzy key; nothing here raises.
"""

import re
from dataclasses import dataclass

# Width of the time bucket used by fuzzy keys and route/stop/time keys
TIME_WINDOW_SECONDS = 300

_TRIP_ID_PATTERN = re.compile(r"^\d+_(\d+)_([^_]+)_[^_]+_(\d{6})$")


@dataclass(frozen=True)
class TripIdComponents:
    service_code: str
    line: str
    time: str          # HHMMSS as found in the id
    time_seconds: int  # seconds after midnight; hours may exceed 23


def normalize_trip_id(trip_id: str) -> str:
    """Drop everything up to and including the first underscore.

    Not idempotent: callers normalize once, from the raw id.
    """
    head, sep, tail = trip_id.partition("_")
    return tail if sep else trip_id


def parse_trip_id_components(trip_id: str) -> TripIdComponents | None:
    match = _TRIP_ID_PATTERN.match(trip_id)
    if match is None:
        return None
    service_code, line, hhmmss = match.groups()
    hours, minutes, seconds = int(hhmmss[0:2]), int(hhmmss[2:4]), int(hhmmss[4:6])
    return TripIdComponents(
        service_code=service_code,
        line=line,
        time=hhmmss,
        time_seconds=hours * 3600 + minutes * 60 + seconds,
    )


def time_window(seconds: int) -> int:
    """Round a time (seconds) down to the start of its 5-minute bucket."""
    return (seconds // TIME_WINDOW_SECONDS) * TIME_WINDOW_SECONDS


def fuzzy_key(trip_id: str) -> str | None:
    """serviceCode_line_timeWindow, or None when the id can't be parsed.

    Two trips of the same service/line starting in the same 5-minute bucket
    share a key; that coarsening is what lets drifted ids still match.
    """
    components = parse_trip_id_components(trip_id)
    if components is None:
        return None
    return f"{components.service_code}_{components.line}_{time_window(components.time_seconds)}"
