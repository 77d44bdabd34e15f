"""
Element Definitions

Answers cardinality questions about resource elements using the model
classes shipped with fhir.resources. Used by the _summary=text projection
to find which elements must be kept.
"""
from functools import lru_cache
from typing import FrozenSet

from fhir.resources import get_fhir_model_class


def _is_mandatory(field_info) -> bool:
    extra = field_info.json_schema_extra
    if isinstance(extra, dict) and extra.get("element_required"):
        return True
    return field_info.is_required()


@lru_cache(maxsize=None)
def mandatory_elements(resource_type: str) -> FrozenSet[str]:
    """JSON names of the elements with minimum cardinality >= 1."""
    try:
        model_class = get_fhir_model_class(resource_type)
    except (KeyError, ValueError, ImportError):
        return frozenset()

    return frozenset(
        field_info.alias or name
        for name, field_info in model_class.model_fields.items()
        if _is_mandatory(field_info)
    )


class ElementDefinitions:
    """Element definition lookup keyed by resource type."""

    def min_cardinality(self, resource_type: str, element: str) -> int:
        return 1 if element in mandatory_elements(resource_type) else 0
