"""
CapabilityStatement Augmentation

Merges the search parameters known to the store into the
CapabilityStatement it produces, and stamps the interaction-layer
features (formats, conditional operations) onto it.
"""
from typing import Any, Dict, Iterable, List

SUPPORTED_FORMATS = ["xml", "json"]

# Extra modifiers per search parameter type, on top of :missing
TYPE_MODIFIERS = {
    "string": ["exact", "contains"],
    "uri": ["below"],
}


def modifiers_for(param_type: str) -> List[str]:
    """Modifiers a search parameter of this type supports."""
    if param_type == "composite":
        return []
    return ["missing"] + TYPE_MODIFIERS.get(param_type, [])


def _bases(search_parameter: Dict[str, Any]) -> List[str]:
    base = search_parameter.get("base")
    if base is None:
        return []
    if isinstance(base, str):
        return [base]
    return list(base)


def search_param_entry(search_parameter: Dict[str, Any]) -> Dict[str, Any]:
    entry = {
        "name": search_parameter.get("name") or search_parameter.get("code"),
        "definition": search_parameter.get("url"),
        "type": search_parameter.get("type"),
    }
    if search_parameter.get("target"):
        entry["target"] = search_parameter["target"]
    modifiers = modifiers_for(search_parameter.get("type"))
    if modifiers:
        entry["modifier"] = modifiers
    return entry


def augment(
    statement: Dict[str, Any],
    search_parameters: Iterable[Dict[str, Any]],
    settings
) -> Dict[str, Any]:
    """
    Add searchParam entries and deployment facts to a CapabilityStatement.

    Args:
        statement: CapabilityStatement from the store (modified in place)
        search_parameters: SearchParameter resources
        settings: Application settings (status, experimental, multi-delete)

    Returns:
        The augmented statement
    """
    statement["format"] = list(SUPPORTED_FORMATS)
    statement["status"] = settings.capability_status
    statement["experimental"] = settings.capability_experimental

    rest = statement.get("rest") or []
    if not rest:
        return statement

    # Resource type tag -> capability entry
    by_type = {entry["type"]: entry for entry in rest[0].get("resource") or [] if entry.get("type")}

    conditional_delete = "multiple" if settings.allow_multiple_deletes else "single"
    for entry in by_type.values():
        entry["conditionalCreate"] = True
        entry["conditionalUpdate"] = True
        entry["conditionalDelete"] = conditional_delete

    for search_parameter in search_parameters:
        for base in _bases(search_parameter):
            entry = by_type.get(base)
            if entry is not None:
                entry.setdefault("searchParam", []).append(search_param_entry(search_parameter))

    return statement
