"""
GPX builders for tests. Points are given as (lon, lat) like everywhere else
in the code base.
"""
from __future__ import annotations

from typing import Iterable, Optional, Sequence, Tuple

LonLat = Tuple[float, float]

_HEADER = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<gpx version="1.1" creator="tests" xmlns="http://www.topografix.com/GPX/1/1">\n'
)


def _pts(tag: str, points: Iterable[LonLat]) -> str:
    return "".join(f'<{tag} lat="{lat}" lon="{lon}"></{tag}>' for lon, lat in points)


def gpx_doc(
    segments: Sequence[Sequence[LonLat]] = (),
    *,
    activity: Optional[str] = None,
    routes: Sequence[Sequence[LonLat]] = (),
    waypoints: Sequence[LonLat] = (),
) -> str:
    """One <trk> holding `segments`, plus optional routes and waypoints."""
    body = _pts("wpt", waypoints)
    for r in routes:
        body += f"<rte>{_pts('rtept', r)}</rte>"
    if segments:
        body += "<trk><name>test</name>"
        if activity:
            body += f"<type>{activity}</type>"
        for seg in segments:
            body += f"<trkseg>{_pts('trkpt', seg)}</trkseg>"
        body += "</trk>"
    return _HEADER + body + "\n</gpx>\n"


def gpx_bytes(*segments: Sequence[LonLat], activity: Optional[str] = None) -> bytes:
    return gpx_doc(segments, activity=activity).encode("utf-8")


# The reference line used across the suite: (0,0) -> (0,10) degrees
MERIDIAN_LINE = [(0.0, 0.0), (0.0, 10.0)]
