"""
fhirbase resource store.

fhirbase keeps FHIR resources in PostgreSQL and exposes every interaction
as a SQL function taking a single JSON argument, e.g.

    SELECT fhir_read_resource('{"resourceType": "Patient", "id": "123"}');

Each call returns one row with one JSON column holding the resource,
Bundle or OperationOutcome.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.orm import Session

from .base import ResourceStore, Resource

logger = logging.getLogger(__name__)

SEARCH_PARAMETER_LIMIT = 10000

# Table names are interpolated, so callers only pass registered resource types
LAST_VERSION_SQL = (
    'SELECT version_id FROM "{table}_history" '
    "WHERE id = :resource_id ORDER BY valid_from DESC LIMIT 1"
)


class FhirbaseStore(ResourceStore):
    """Resource store backed by the fhirbase stored procedures."""

    def __init__(self, db: Session):
        self.db = db

    def get_store_name(self) -> str:
        return "fhirbase"

    def _call(self, function: str, payload: Dict[str, Any]) -> Resource:
        """Invoke one fhirbase function and unpack its JSON result."""
        logger.debug("fhirbase %s(%s)", function, payload)
        row = self.db.execute(
            text(f"SELECT {function}(CAST(:payload AS jsonb))"),
            {"payload": json.dumps(payload)}
        ).first()
        self.db.commit()

        result = row[0] if row else None
        if isinstance(result, (str, bytes)):
            result = json.loads(result)
        return result

    def conformance(self) -> Resource:
        return self._call("fhir_conformance", {"default": "values"})

    def create(self, resource_type: str, resource: Resource) -> Resource:
        return self._call("fhir_create_resource", {"resource": resource})

    def read(self, resource_type: str, resource_id: str) -> Resource:
        return self._call("fhir_read_resource", {"resourceType": resource_type, "id": resource_id})

    def vread(self, resource_type: str, resource_id: str, version_id: str) -> Resource:
        return self._call("fhir_vread_resource", {
            "resourceType": resource_type,
            "id": resource_id,
            "versionId": version_id,
        })

    def update(
        self,
        resource_type: str,
        resource_id: str,
        resource: Resource,
        if_match: Optional[str] = None
    ) -> Resource:
        resource = dict(resource, id=resource_id)
        payload = {"resource": resource}
        if if_match is not None:
            payload["ifMatch"] = if_match
        return self._call("fhir_update_resource", payload)

    def delete(self, resource_type: str, resource_id: str) -> Resource:
        return self._call("fhir_delete_resource", {"resourceType": resource_type, "id": resource_id})

    def search(self, resource_type: str, query_string: str) -> Resource:
        return self._call("fhir_search", {"resourceType": resource_type, "queryString": query_string or ""})

    def history(self, resource_type: str, resource_id: str) -> Resource:
        return self._call("fhir_resource_history", {"resourceType": resource_type, "id": resource_id})

    def list_search_parameters(self) -> Resource:
        return self.search("SearchParameter", f"_count={SEARCH_PARAMETER_LIMIT}")

    def raw_query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Sequence[Any]]:
        return [tuple(row) for row in self.db.execute(text(sql), params or {}).fetchall()]

    def last_version_id(self, resource_type: str, resource_id: str) -> Optional[str]:
        rows = self.raw_query(
            LAST_VERSION_SQL.format(table=resource_type.lower()),
            {"resource_id": resource_id}
        )
        return str(rows[0][0]) if rows else None
