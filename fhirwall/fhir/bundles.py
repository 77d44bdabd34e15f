"""
Bundle helpers

Fills per-entry fullUrl values in search and history bundles returned
by the store.
"""
from typing import Any, Dict, List


def populate_full_urls(bundle: Dict[str, Any], base: str) -> Dict[str, Any]:
    """
    Set entry.fullUrl = <base>/<type>/<id> for every entry whose resource
    has an id.

    Deleted resources in a history bundle have no resource element, so no
    fullUrl is made up for them. Anything that is not a Bundle is returned
    unchanged.
    """
    if not bundle or bundle.get("resourceType") != "Bundle":
        return bundle

    for entry in bundle.get("entry") or []:
        found = entry.get("resource")
        if found and found.get("id"):
            entry["fullUrl"] = f"{base}/{found['resourceType']}/{found['id']}"

    return bundle


def entry_resources(bundle: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Resources carried by a bundle's entries, skipping empty entries."""
    return [entry["resource"] for entry in bundle.get("entry") or [] if entry.get("resource")]


def match_count(bundle: Dict[str, Any]) -> int:
    """Number of matches a search bundle reports (total, else entry count)."""
    total = bundle.get("total")
    if total is None:
        return len(entry_resources(bundle))
    return int(total)
