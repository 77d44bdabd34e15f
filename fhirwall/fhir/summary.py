"""
Summary Projection

Implements the _summary search/read parameter:
- true: the summary view the store produces for a _summary=true search
- data: everything except the narrative (text)
- text: narrative, id, meta and mandatory elements only

Every projected resource is tagged SUBSETTED so clients do not mistake
it for the full resource.
"""
from typing import Any, Callable, Dict, Optional

from .bundles import entry_resources, match_count
from .outcomes import is_outcome

SUMMARY_MODES = ("true", "text", "data")

SUBSETTED_TAG = {
    "system": "http://terminology.hl7.org/CodeSystem/v3-ObservationValue",
    "code": "SUBSETTED",
    "display": "subsetted",
}

# Always kept by _summary=text
TEXT_SUMMARY_ELEMENTS = ("resourceType", "meta", "id", "text")


def mark_subsetted(resource: Dict[str, Any]) -> Dict[str, Any]:
    meta = resource.setdefault("meta", {})
    meta.setdefault("security", []).append(dict(SUBSETTED_TAG))
    return resource


class SummaryProjector:
    """
    Produces _summary views of a single resource.

    Usage:
        projector = SummaryProjector(ElementDefinitions())
        resource = projector.project("Patient", "123", "data", fetch, search)
    """

    def __init__(self, schema):
        self.schema = schema

    def project(
        self,
        resource_type: str,
        resource_id: str,
        mode: Optional[str],
        fetch: Callable[[], Dict[str, Any]],
        search: Callable[[str], Dict[str, Any]]
    ) -> Dict[str, Any]:
        """
        Fetch a resource, projected according to the summary mode.

        Args:
            resource_type: Resource type from the request path
            resource_id: Logical id from the request path
            mode: Value of _summary (None/'false' means no projection)
            fetch: Returns the full resource
            search: Runs a search for the type with the given query string

        Returns:
            The projected resource, or whatever fetch returned when there
            is nothing to project (no mode, OperationOutcome)
        """
        if mode not in SUMMARY_MODES:
            return fetch()

        if mode == "true":
            resource = self._search_summary(resource_id, search) or fetch()
        else:
            resource = fetch()
            if is_outcome(resource):
                return resource
            if mode == "data":
                resource.pop("text", None)
            else:
                resource = self._text_summary(resource_type, resource)

        if is_outcome(resource):
            return resource
        return mark_subsetted(resource)

    def _search_summary(self, resource_id: str, search) -> Optional[Dict[str, Any]]:
        bundle = search(f"_id={resource_id}&_summary=true")
        if not bundle or bundle.get("resourceType") != "Bundle":
            return None
        matches = entry_resources(bundle)
        if match_count(bundle) == 1 and len(matches) == 1:
            return matches[0]
        return None

    def _text_summary(self, resource_type: str, resource: Dict[str, Any]) -> Dict[str, Any]:
        return {
            name: value
            for name, value in resource.items()
            if name in TEXT_SUMMARY_ELEMENTS
            or self.schema.min_cardinality(resource_type, name) >= 1
        }
