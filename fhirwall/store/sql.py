"""
SQL resource store.

Keeps every version of every resource as a row of the fhir_resources
table (see models.StoredResource). Works on any database SQLAlchemy
supports, which makes it the default backend for development and tests.

Search is simple: a parameter named after a top-level element matches
when any scalar inside that element starts with the given value
(case-insensitive). Supported extras:
- :exact, :contains and :missing modifiers
- comma-separated values (OR)
- system|code tokens
- _id, _count, _page, _summary=true|count
"""
import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlencode

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import StoredResource
from .base import ResourceStore, Resource

logger = logging.getLogger(__name__)

STATUS_EXTENSION_URL = "http-status-code"

DEFAULT_COUNT = 50
SEARCH_PARAMETER_LIMIT = 10000

# Result parameters that never filter
RESULT_PARAMETERS = {"_format", "_sort", "_elements", "_include", "_revinclude", "_total", "_contained"}

INTERACTIONS = ["read", "vread", "update", "delete", "history-instance", "create", "search-type"]

LAST_VERSION_SQL = (
    "SELECT version_id FROM fhir_resources "
    "WHERE resource_type = :resource_type AND resource_id = :resource_id AND is_deleted = :is_deleted "
    "ORDER BY version_id DESC LIMIT 1"
)


def outcome(status: int, code: str, diagnostics: str, severity: str = "error") -> Resource:
    """OperationOutcome carrying its HTTP status as an extension."""
    return {
        "resourceType": "OperationOutcome",
        "issue": [{
            "severity": severity,
            "code": code,
            "diagnostics": diagnostics,
            "extension": [{"url": STATUS_EXTENSION_URL, "valueString": str(status)}],
        }]
    }


def instant_now() -> Tuple[datetime, str]:
    now = datetime.now(timezone.utc)
    return now, now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _leaf_values(value: Any) -> Iterator[str]:
    if isinstance(value, dict):
        for item in value.values():
            yield from _leaf_values(item)
    elif isinstance(value, list):
        for item in value:
            yield from _leaf_values(item)
    elif isinstance(value, bool):
        yield "true" if value else "false"
    elif value is not None:
        yield str(value)


def _codings(value: Any) -> Iterator[Dict[str, Any]]:
    if isinstance(value, dict):
        yield value
        for item in value.values():
            yield from _codings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _codings(item)


def _match_token(element: Any, system: str, code: str) -> bool:
    return any(
        (not system or coding.get("system") == system)
        and (coding.get("code") == code or coding.get("value") == code)
        for coding in _codings(element)
    )


def _match_value(element: Any, candidate: str, modifier: str) -> bool:
    if "|" in candidate and not modifier:
        system, _, code = candidate.partition("|")
        return _match_token(element, system, code)

    wanted = candidate.casefold()
    for leaf in _leaf_values(element):
        if modifier == "exact":
            if leaf == candidate:
                return True
        elif modifier == "contains":
            if wanted in leaf.casefold():
                return True
        elif leaf.casefold().startswith(wanted):
            return True
    return False


def matches(resource: Resource, name: str, value: str) -> bool:
    """True when the resource satisfies one search parameter."""
    element, _, modifier = name.partition(":")
    present = resource.get(element) not in (None, [], {})

    if modifier == "missing":
        return present != (value.lower() == "true")
    if not present:
        return False
    return any(_match_value(resource[element], candidate, modifier) for candidate in value.split(","))


class SqlStore(ResourceStore):
    """Versioned resource store on top of a SQLAlchemy session."""

    def __init__(self, db: Session, known_resources=frozenset(), fhir_version: str = "4.0.1", software: str = "fhirwall"):
        self.db = db
        self.known_resources = known_resources
        self.fhir_version = fhir_version
        self.software = software

    def get_store_name(self) -> str:
        return "sql"

    # ------------------------------------------------------------------
    # Row helpers
    # ------------------------------------------------------------------

    def _versions(self, resource_type: str, resource_id: str) -> List[StoredResource]:
        return self.db.query(StoredResource).filter(
            StoredResource.resource_type == resource_type,
            StoredResource.resource_id == resource_id
        ).order_by(StoredResource.version_id).all()

    def _current(self, resource_type: str, resource_id: str) -> Optional[StoredResource]:
        return self.db.query(StoredResource).filter(
            StoredResource.resource_type == resource_type,
            StoredResource.resource_id == resource_id
        ).order_by(StoredResource.version_id.desc()).first()

    def _live_resources(self, resource_type: str) -> List[Resource]:
        rows = self.db.query(StoredResource).filter(
            StoredResource.resource_type == resource_type
        ).order_by(StoredResource.pk).all()

        # Later versions replace earlier ones; ids keep their first-seen order
        latest: Dict[str, StoredResource] = {}
        for row in rows:
            latest[row.resource_id] = row
        return [copy.deepcopy(row.content) for row in latest.values() if not row.is_deleted]

    def _append(self, row: StoredResource) -> Optional[Resource]:
        """Commit a new version row; an outcome is returned on a version clash."""
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                "Concurrent write to %s/%s version %s", row.resource_type, row.resource_id, row.version_id
            )
            return outcome(409, "conflict",
                           f"Version {row.version_id} of {row.resource_type}/{row.resource_id} was written concurrently")
        return None

    def _write(self, resource_type: str, resource_id: str, version_id: int, resource: Resource) -> Resource:
        now, instant = instant_now()
        content = copy.deepcopy(resource)
        content["id"] = resource_id
        meta = dict(content.get("meta") or {})
        meta["versionId"] = str(version_id)
        meta["lastUpdated"] = instant
        content["meta"] = meta

        conflict = self._append(StoredResource(
            resource_type=resource_type,
            resource_id=resource_id,
            version_id=version_id,
            is_deleted=False,
            content=content,
            last_updated=now
        ))
        return conflict or copy.deepcopy(content)

    @staticmethod
    def _type_mismatch(resource_type: str, resource: Resource) -> Optional[Resource]:
        if resource.get("resourceType") != resource_type:
            return outcome(400, "invalid",
                           f"Resource type '{resource.get('resourceType')}' does not match endpoint '{resource_type}'")
        return None

    # ------------------------------------------------------------------
    # Store interface
    # ------------------------------------------------------------------

    def conformance(self) -> Resource:
        _, instant = instant_now()
        return {
            "resourceType": "CapabilityStatement",
            "status": "draft",
            "date": instant,
            "kind": "instance",
            "fhirVersion": self.fhir_version,
            "software": {"name": self.software},
            "rest": [{
                "mode": "server",
                "resource": [
                    {
                        "type": resource_type,
                        "interaction": [{"code": code} for code in INTERACTIONS],
                        "versioning": "versioned",
                        "readHistory": True,
                        "updateCreate": True,
                    }
                    for resource_type in sorted(self.known_resources)
                ]
            }]
        }

    def create(self, resource_type: str, resource: Resource) -> Resource:
        mismatch = self._type_mismatch(resource_type, resource)
        if mismatch:
            return mismatch
        return self._write(resource_type, str(uuid.uuid4()), 1, resource)

    def read(self, resource_type: str, resource_id: str) -> Resource:
        row = self._current(resource_type, resource_id)
        if row is None:
            return outcome(404, "not-found", f"Resource {resource_type}/{resource_id} not found")
        if row.is_deleted:
            return outcome(410, "deleted", f"Resource {resource_type}/{resource_id} was deleted")
        return copy.deepcopy(row.content)

    def vread(self, resource_type: str, resource_id: str, version_id: str) -> Resource:
        row = self.db.query(StoredResource).filter(
            StoredResource.resource_type == resource_type,
            StoredResource.resource_id == resource_id,
            StoredResource.version_id == _as_int(version_id)
        ).first()
        if row is None:
            return outcome(404, "not-found",
                           f"Version {version_id} of {resource_type}/{resource_id} not found")
        if row.is_deleted:
            return outcome(410, "deleted",
                           f"Version {version_id} of {resource_type}/{resource_id} is a deletion")
        return copy.deepcopy(row.content)

    def update(
        self,
        resource_type: str,
        resource_id: str,
        resource: Resource,
        if_match: Optional[str] = None
    ) -> Resource:
        mismatch = self._type_mismatch(resource_type, resource)
        if mismatch:
            return mismatch
        if resource.get("id") and resource["id"] != resource_id:
            return outcome(400, "invalid",
                           f"Resource id '{resource['id']}' does not match endpoint id '{resource_id}'")

        current = self._current(resource_type, resource_id)
        if if_match is not None:
            current_version = None if current is None or current.is_deleted else str(current.version_id)
            if current_version != str(if_match):
                return outcome(412, "conflict",
                               f"Version mismatch for {resource_type}/{resource_id}: "
                               f"expected {if_match}, current is {current_version}")

        version_id = current.version_id + 1 if current else 1
        return self._write(resource_type, resource_id, version_id, resource)

    def delete(self, resource_type: str, resource_id: str) -> Resource:
        current = self._current(resource_type, resource_id)
        if current is None:
            return outcome(404, "not-found", f"Resource {resource_type}/{resource_id} not found")
        if current.is_deleted:
            return outcome(410, "deleted", f"Resource {resource_type}/{resource_id} already deleted")

        now, _ = instant_now()
        conflict = self._append(StoredResource(
            resource_type=resource_type,
            resource_id=resource_id,
            version_id=current.version_id + 1,
            is_deleted=True,
            content=None,
            last_updated=now
        ))
        return conflict or copy.deepcopy(current.content)

    def search(self, resource_type: str, query_string: str) -> Resource:
        params = parse_qsl(query_string or "", keep_blank_values=True)
        count, page, summary, ids = DEFAULT_COUNT, 1, None, None
        filters = []

        for name, value in params:
            if name == "_count":
                count = _as_int(value)
                if count is None:
                    return outcome(400, "invalid", f"Invalid _count '{value}'")
                count = max(count, 0)
            elif name == "_page":
                page = max(_as_int(value) or 1, 1)
            elif name == "_summary":
                summary = value
            elif name == "_id":
                ids = set(value.split(","))
            elif name in RESULT_PARAMETERS:
                continue
            else:
                filters.append((name, value))

        found = [
            resource for resource in self._live_resources(resource_type)
            if (ids is None or resource.get("id") in ids)
            and all(matches(resource, name, value) for name, value in filters)
        ]

        bundle = {
            "resourceType": "Bundle",
            "type": "searchset",
            "total": len(found),
            "link": [{"relation": "self", "url": _search_url(resource_type, params)}],
        }
        if summary == "count":
            return bundle

        start = (page - 1) * count
        selected = found[start:start + count]
        if start + count < len(found):
            next_params = [(n, v) for n, v in params if n != "_page"] + [("_page", str(page + 1))]
            bundle["link"].append({"relation": "next", "url": _search_url(resource_type, next_params)})

        if summary == "true":
            for resource in selected:
                resource.pop("text", None)
                resource.pop("contained", None)

        bundle["entry"] = [{"resource": resource, "search": {"mode": "match"}} for resource in selected]
        return bundle

    def history(self, resource_type: str, resource_id: str) -> Resource:
        rows = self._versions(resource_type, resource_id)
        if not rows:
            return outcome(404, "not-found", f"Resource {resource_type}/{resource_id} not found")

        url = f"{resource_type}/{resource_id}"
        entries = []
        for row in reversed(rows):
            if row.is_deleted:
                entries.append({"request": {"method": "DELETE", "url": url}})
            else:
                entries.append({
                    "resource": copy.deepcopy(row.content),
                    "request": {"method": "POST" if row.version_id == 1 else "PUT", "url": url},
                })

        return {"resourceType": "Bundle", "type": "history", "total": len(entries), "entry": entries}

    def list_search_parameters(self) -> Resource:
        return self.search("SearchParameter", f"_count={SEARCH_PARAMETER_LIMIT}")

    def raw_query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Sequence[Any]]:
        return [tuple(row) for row in self.db.execute(text(sql), params or {}).fetchall()]

    def last_version_id(self, resource_type: str, resource_id: str) -> Optional[str]:
        rows = self.raw_query(LAST_VERSION_SQL, {
            "resource_type": resource_type,
            "resource_id": resource_id,
            "is_deleted": False,
        })
        return str(rows[0][0]) if rows else None


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _search_url(resource_type: str, params: List[Tuple[str, str]]) -> str:
    return f"{resource_type}?{urlencode(params)}" if params else resource_type
