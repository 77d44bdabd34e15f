"""
Bulk loading of resources from JSON files into a store.

A file holds either a single resource or a Bundle whose entries carry
resources. Resources with an id keep it (written through update); the
rest get an id from the store (create).
"""
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List

from .fhir.bundles import entry_resources
from .fhir.outcomes import is_failure

logger = logging.getLogger(__name__)

ADDED = "added"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class LoadReport:
    """Per-resource results of a load run."""
    added: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def record(self, status: str, label: str) -> None:
        getattr(self, status).append(label)

    @property
    def total(self) -> int:
        return len(self.added) + len(self.skipped) + len(self.failed)


def iter_resources(document: Dict[str, Any]) -> Iterator[Dict[str, Any]]:
    """Resources in a JSON document; Bundles are unpacked one level."""
    if document.get("resourceType") == "Bundle":
        yield from entry_resources(document)
    elif document.get("resourceType"):
        yield document


def load_resource(store, resource: Dict[str, Any], known_resources) -> str:
    resource_type = resource["resourceType"]
    if resource_type not in known_resources:
        return SKIPPED

    if resource.get("id"):
        written = store.update(resource_type, resource["id"], resource)
    else:
        written = store.create(resource_type, resource)

    if is_failure(written):
        logger.warning("Store rejected %s: %s", resource_type, written["issue"][0].get("diagnostics"))
        return FAILED
    return ADDED


def load_directory(store, directory: Path, known_resources) -> LoadReport:
    """Load every *.json file in a directory, in name order."""
    report = LoadReport()
    for path in sorted(Path(directory).glob("*.json")):
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)

        for resource in iter_resources(document):
            label = f"{path.name}: {resource.get('resourceType')}/{resource.get('id', '(new)')}"
            report.record(load_resource(store, resource, known_resources), label)
    return report
