"""
Conditional Operations

Create, update and delete on top of the store's plain primitives, plus
the conditional variants driven by a search:

- create + If-None-Exist: skip creation when exactly one resource matches
- PUT /{type}?criteria: create (0 matches), update (1), refuse (2+)
- DELETE /{type}?criteria: nothing (0), delete (1), delete all or refuse (2+)

The search and the mutation that follows it are separate store calls, so
two concurrent requests with the same criteria can both act. Callers that
need strict exclusivity have to rely on the store's own constraints.
"""
import logging
from typing import Iterable, Optional
from urllib.parse import parse_qsl, urlencode

from ..fhir.bundles import entry_resources, match_count
from ..fhir.outcomes import FhirResult, is_failure, is_outcome, status_hint
from ..fhir.versioning import derive_headers, weak_etag

logger = logging.getLogger(__name__)

# Parameters that shape a result page rather than select resources
PAGING_PARAMETERS = ("_count", "_page", "_format", "_summary", "_elements")


def strip_parameters(query_string: Optional[str], names: Iterable[str]) -> str:
    """Query string without the named parameters."""
    names = set(names)
    return urlencode([
        (name, value)
        for name, value in parse_qsl(query_string or "", keep_blank_values=True)
        if name not in names
    ])


def _search_failed(bundle) -> bool:
    return is_outcome(bundle) and is_failure(bundle)


class ConditionalOrchestrator:
    """
    Mutating FHIR interactions for one request.

    Args:
        store: ResourceStore bound to the request's session
        context: Process-wide FhirContext
        base: Server base URL of the request
    """

    def __init__(self, store, context, base: str):
        self.store = store
        self.context = context
        self.base = base

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, resource_type: str, resource: dict, if_none_exist: Optional[str] = None) -> FhirResult:
        """Plain create, or conditional create when If-None-Exist is given."""
        if if_none_exist:
            bundle = self.store.search(resource_type, if_none_exist)
            if _search_failed(bundle):
                return FhirResult.from_store(bundle)
            if match_count(bundle) == 1:
                logger.info("Conditional create of %s skipped, '%s' already matches", resource_type, if_none_exist)
                return self.context.canned.result("already_exists", resource_type, if_none_exist)

        created = self.store.create(resource_type, resource)
        return FhirResult.from_store(created, 201, derive_headers(created, self.base))

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update(
        self,
        resource_type: str,
        resource_id: str,
        resource: dict,
        if_match: Optional[str] = None
    ) -> FhirResult:
        """Update by id; answers 201 when the update created the resource."""
        existing = self.store.read(resource_type, resource_id)
        status = 201 if is_outcome(existing) else 200

        updated = self.store.update(resource_type, resource_id, resource, if_match)
        return FhirResult.from_store(updated, status, derive_headers(updated, self.base))

    def conditional_update(
        self,
        resource_type: str,
        query_string: str,
        resource: dict,
        if_match: Optional[str] = None
    ) -> FhirResult:
        criteria = strip_parameters(query_string, PAGING_PARAMETERS)
        bundle = self.store.search(resource_type, criteria)
        if _search_failed(bundle):
            return FhirResult.from_store(bundle)

        found = match_count(bundle)
        if found == 0:
            logger.info("Conditional update of %s matched nothing, creating", resource_type)
            created = self.store.create(resource_type, resource)
            return FhirResult.from_store(created, 201, derive_headers(created, self.base))

        if found > 1:
            logger.warning("Conditional update of %s refused, %d resources match '%s'", resource_type, found, criteria)
            return self.context.canned.result("multiple_matches", resource_type, criteria)

        matched = entry_resources(bundle)
        if not matched:
            return self._unlisted_matches(resource_type, criteria, found)

        match_id = matched[0]["id"]
        resource = dict(resource, id=match_id)
        updated = self.store.update(resource_type, match_id, resource, if_match)
        return FhirResult.from_store(updated, 200, derive_headers(updated, self.base))

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def _unlisted_matches(self, resource_type: str, criteria: str, found: int) -> FhirResult:
        logger.error("Search for %s matching '%s' reported %d matches but returned no entries",
                     resource_type, criteria, found)
        return self.context.canned.result("unlisted_matches", found, resource_type, criteria)

    def _deleted_etag(self, resource_type: str, resource_id: str) -> Optional[str]:
        """ETag of the last version before deletion, for registered types only."""
        if resource_type not in self.context.known_resources:
            return None
        return weak_etag(self.store.last_version_id(resource_type, resource_id))

    def delete(self, resource_type: str, resource_id: str) -> FhirResult:
        """
        Delete by id. Deleting is idempotent:
        - never existed -> 204
        - already deleted -> 200 with the deleted version's ETag
        - deleted now -> 204 with the resource's ETag
        """
        deleted = self.store.delete(resource_type, resource_id)
        hint = status_hint(deleted)

        if hint == 404:
            return FhirResult(status=204)
        if hint == 410:
            return FhirResult(deleted, 200, {"ETag": self._deleted_etag(resource_type, resource_id)})
        if is_outcome(deleted):
            return FhirResult.from_store(deleted, 204)

        version_id = (deleted.get("meta") or {}).get("versionId")
        return FhirResult(status=204, headers={"ETag": weak_etag(version_id)})

    def conditional_delete(self, resource_type: str, query_string: str) -> FhirResult:
        settings = self.context.settings
        criteria = strip_parameters(query_string, PAGING_PARAMETERS)
        bounded = f"{criteria}&_count={settings.conditional_delete_max}" if criteria \
            else f"_count={settings.conditional_delete_max}"

        bundle = self.store.search(resource_type, bounded)
        if _search_failed(bundle):
            return FhirResult.from_store(bundle)

        found = match_count(bundle)
        matched = entry_resources(bundle)

        if found == 0:
            return self.context.canned.result("nothing_to_delete", resource_type, criteria)
        if not matched:
            return self._unlisted_matches(resource_type, criteria, found)

        if found == 1:
            match_id = matched[0]["id"]
            deleted = self.store.delete(resource_type, match_id)
            if is_failure(deleted):
                return FhirResult.from_store(deleted, 204)
            return FhirResult(status=204, headers={"ETag": self._deleted_etag(resource_type, match_id)})

        if not settings.allow_multiple_deletes:
            logger.warning("Conditional delete of %s refused, %d resources match '%s'", resource_type, found, criteria)
            return self.context.canned.result("multiple_disallowed", resource_type, criteria)

        deleted_count = sum(
            1 for match in matched
            if not is_failure(self.store.delete(resource_type, match["id"]))
        )
        logger.info("Conditional delete removed %d of %d %s resources", deleted_count, found, resource_type)
        return self.context.canned.result("deleted_resources", deleted_count, resource_type, criteria)
