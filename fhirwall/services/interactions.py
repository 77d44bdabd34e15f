from typing import Optional

from ..fhir.bundles import entry_resources, populate_full_urls
from ..fhir.capability import augment
from ..fhir.outcomes import FhirResult, is_outcome
from ..fhir.summary import SummaryProjector
from ..fhir.versioning import derive_headers
from .conditional import ConditionalOrchestrator, strip_parameters


class InteractionService:
    """FHIR REST interactions for one request, on top of a resource store"""

    def __init__(self, store, context, base: str):
        self.store = store
        self.context = context
        self.base = base
        self.conditional = ConditionalOrchestrator(store, context, base)
        self.projector = SummaryProjector(context.schema)

    def capabilities(self) -> FhirResult:
        """CapabilityStatement with search parameters and conditional support"""
        statement = self.store.conformance()
        if is_outcome(statement):
            return FhirResult.from_store(statement)

        search_parameters = self.store.list_search_parameters()
        parameters = [] if is_outcome(search_parameters) else entry_resources(search_parameters)
        return FhirResult.from_store(augment(statement, parameters, self.context.settings))

    def read(self, resource_type: str, resource_id: str, summary: Optional[str] = None) -> FhirResult:
        resource = self.projector.project(
            resource_type,
            resource_id,
            summary,
            fetch=lambda: self.store.read(resource_type, resource_id),
            search=lambda query: self.store.search(resource_type, query)
        )
        return FhirResult.from_store(resource, headers=self._version_headers(resource))

    def vread(self, resource_type: str, resource_id: str, version_id: str) -> FhirResult:
        resource = self.store.vread(resource_type, resource_id, version_id)
        return FhirResult.from_store(resource, headers=self._version_headers(resource))

    def search(self, resource_type: str, query_string: str) -> FhirResult:
        bundle = self.store.search(resource_type, strip_parameters(query_string, ("_format",)))
        return FhirResult.from_store(populate_full_urls(bundle, self.base))

    def history(self, resource_type: str, resource_id: str) -> FhirResult:
        bundle = self.store.history(resource_type, resource_id)
        return FhirResult.from_store(populate_full_urls(bundle, self.base))

    def create(self, resource_type: str, resource: dict, if_none_exist: Optional[str] = None) -> FhirResult:
        return self.conditional.create(resource_type, resource, if_none_exist)

    def update(self, resource_type: str, resource_id: str, resource: dict, if_match: Optional[str] = None) -> FhirResult:
        return self.conditional.update(resource_type, resource_id, resource, if_match)

    def conditional_update(
        self,
        resource_type: str,
        query_string: str,
        resource: dict,
        if_match: Optional[str] = None
    ) -> FhirResult:
        return self.conditional.conditional_update(resource_type, query_string, resource, if_match)

    def delete(self, resource_type: str, resource_id: str) -> FhirResult:
        return self.conditional.delete(resource_type, resource_id)

    def conditional_delete(self, resource_type: str, query_string: str) -> FhirResult:
        return self.conditional.conditional_delete(resource_type, query_string)

    def _version_headers(self, resource) -> dict:
        # Reads report the version, not where it lives
        headers = derive_headers(resource, self.base)
        headers.pop("Location")
        return headers
