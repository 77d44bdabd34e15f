"""
Versioning Headers

Derives Last-Modified, ETag and Location from resource metadata and
reconstructs the server base URL from the inbound request.
"""
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Dict, Optional

DEFAULT_PORTS = (80, 443)


def base_url(request) -> str:
    """scheme://host[:port] of the request, omitting default ports."""
    url = request.url
    port = url.port
    if port is None or port in DEFAULT_PORTS:
        return f"{url.scheme}://{url.hostname}"
    return f"{url.scheme}://{url.hostname}:{port}"


def http_date(instant: Optional[str]) -> Optional[str]:
    """Format a FHIR instant as an HTTP-date, None if it cannot be parsed."""
    if not instant:
        return None
    try:
        parsed = datetime.fromisoformat(instant.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return format_datetime(parsed.astimezone(timezone.utc), usegmt=True)


def weak_etag(version_id: Any) -> Optional[str]:
    if version_id is None:
        return None
    return f'W/"{version_id}"'


def parse_etag(header: Optional[str]) -> Optional[str]:
    """Strip weak-ETag quoting: W/"3" -> 3."""
    if not header:
        return None
    value = header.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"') or None


def history_url(base: str, resource: Dict[str, Any]) -> str:
    return f"{base}/{resource['resourceType']}/{resource['id']}/_history/{resource['meta']['versionId']}"


def derive_headers(resource: Optional[Dict[str, Any]], base: str) -> Dict[str, Optional[str]]:
    """
    Last-Modified, ETag and Location for a stored resource.

    OperationOutcomes and other resources without meta get all three as None.
    """
    headers = {"Last-Modified": None, "ETag": None, "Location": None}
    meta = (resource or {}).get("meta")
    if not meta:
        return headers

    headers["Last-Modified"] = http_date(meta.get("lastUpdated"))
    headers["ETag"] = weak_etag(meta.get("versionId"))
    if resource.get("id") and meta.get("versionId") is not None:
        headers["Location"] = history_url(base, resource)
    return headers
