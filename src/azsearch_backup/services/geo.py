"""Rewrite geo-point values from the query-result shape to GeoJSON.

Query results of older SDKs serialise geography points as
``{"Latitude": 47.6, "Longitude": -122.1, "IsEmpty": false, ...,
"CoordinateSystem": {...}}`` while the upload API expects GeoJSON
``{"type": "Point", "coordinates": [-122.1, 47.6]}`` (longitude first).
"""

from __future__ import annotations

from numbers import Real
from typing import Any, Dict, Mapping

LATITUDE = "Latitude"
LONGITUDE = "Longitude"

_POINT_MEMBERS = frozenset({LATITUDE, LONGITUDE, "IsEmpty", "Z", "M", "CoordinateSystem"})

_LEGACY_TRAILER = ',"IsEmpty":false,"Z":null,"M":null,"CoordinateSystem":{"EpsgId":4326,"Id":"4326","Name":"WGS84"}'


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def is_lat_lon_point(value: Any) -> bool:
    """True for a mapping shaped like a serialised geography point.

    Only the point members may be present; a complex field that merely has
    ``Latitude``/``Longitude`` sub-fields next to others is not a point.
    """

    return (
        isinstance(value, Mapping)
        and _is_number(value.get(LATITUDE))
        and _is_number(value.get(LONGITUDE))
        and set(value) <= _POINT_MEMBERS
    )


def is_geojson_point(value: Any) -> bool:
    return (
        isinstance(value, Mapping)
        and value.get("type") == "Point"
        and isinstance(value.get("coordinates"), list)
    )


def to_geojson_point(value: Mapping[str, Any]) -> Dict[str, Any]:
    return {"type": "Point", "coordinates": [value[LONGITUDE], value[LATITUDE]]}


def rewrite_geo_points(value: Any) -> Any:
    """Return ``value`` with every lat/lon point replaced by a GeoJSON point.

    Walks nested mappings and lists, so complex fields and collections are
    covered. GeoJSON points are kept without their ``crs`` member, which
    makes the rewrite idempotent.
    """

    if is_lat_lon_point(value):
        return to_geojson_point(value)
    if is_geojson_point(value):
        return {"type": "Point", "coordinates": list(value["coordinates"])}
    if isinstance(value, Mapping):
        return {key: rewrite_geo_points(item) for key, item in value.items()}
    if isinstance(value, list):
        return [rewrite_geo_points(item) for item in value]
    return value


def transform_document(document: Mapping[str, Any]) -> Dict[str, Any]:
    """Prepare one exported document for re-upload."""

    return rewrite_geo_points(document)


def legacy_rewrite_geo_text(json_text: str) -> str:
    """Literal text rewrite kept for byte-level comparison with old batch files.

    Only handles the exact WGS84 serialisation with ``Latitude`` before
    ``Longitude``; any other shape is corrupted without warning. The export
    pipeline uses :func:`transform_document` instead.
    """

    text = json_text
    while "CoordinateSystem" in text:
        lat_start = text.index(":", text.index('"Latitude":')) + 1
        lat_end = text.index(",", lat_start)
        lon_start = text.index(":", text.index('"Longitude":')) + 1
        lon_end = text.index(",", lon_start)
        latitude = text[lat_start:lat_end]
        longitude = text[lon_start:lon_end]

        geo_start = text.index('"Latitude":') - 1
        geo_end = text.index("}}", geo_start) + 2
        text = text[:geo_start] + '{ "type": "Point", "coordinates": [' + longitude + ", " + latitude + "] }" + text[geo_end:]

    text = text.replace('"Latitude":', '"type": "Point", "coordinates": [')
    text = text.replace('"Longitude":', "")
    return text.replace(_LEGACY_TRAILER, "]")


__all__ = [
    "is_geojson_point",
    "is_lat_lon_point",
    "legacy_rewrite_geo_text",
    "rewrite_geo_points",
    "to_geojson_point",
    "transform_document",
]
