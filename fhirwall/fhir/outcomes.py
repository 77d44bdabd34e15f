"""
OperationOutcome Handling

- FhirResult: the resource a handler produced plus the HTTP status and
  headers it wants, with the store's own status hint kept separately
- status_hint(): reads the HTTP status a store embeds in an OperationOutcome
- CannedResponse / CannedResponses: OperationOutcome templates used for
  protocol-level answers (conflicts, unknown types, missing bodies...)

Canned templates are shared by every request, so instantiate() always
works on a deep copy.
"""
import copy
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

OPERATION_OUTCOME = "OperationOutcome"

# Extension keys a store may use to carry the HTTP status of an outcome
STATUS_HINT_KEYS = ("code", "valueString", "valueCode", "valueInteger")


def is_outcome(resource: Optional[Dict[str, Any]]) -> bool:
    return bool(resource) and resource.get("resourceType") == OPERATION_OUTCOME


def status_hint(resource: Optional[Dict[str, Any]]) -> Optional[int]:
    """
    HTTP status embedded in an OperationOutcome, if any.

    Only the first issue's extensions are consulted; the first extension
    carrying a numeric value wins.
    """
    if not is_outcome(resource):
        return None

    issues = resource.get("issue") or []
    if not issues:
        return None

    for extension in issues[0].get("extension") or []:
        for key in STATUS_HINT_KEYS:
            value = extension.get(key)
            if value is None:
                continue
            try:
                return int(value)
            except (TypeError, ValueError):
                continue
    return None


def is_failure(resource: Optional[Dict[str, Any]]) -> bool:
    """True for an OperationOutcome whose status hint is an error status."""
    hint = status_hint(resource)
    return hint is not None and hint >= 400


@dataclass
class FhirResult:
    """
    Outcome of one FHIR interaction, ready for the response assembler.

    Attributes:
        resource: Resource to render (None renders an empty body)
        status: Status the handler would answer with
        headers: Extra response headers (None values are dropped)
        suggested_status: Status embedded by the store; overrides status
    """
    resource: Optional[Dict[str, Any]] = None
    status: int = 200
    headers: Dict[str, Optional[str]] = field(default_factory=dict)
    suggested_status: Optional[int] = None

    @classmethod
    def from_store(
        cls,
        resource: Optional[Dict[str, Any]],
        status: int = 200,
        headers: Optional[Dict[str, Optional[str]]] = None
    ) -> "FhirResult":
        """Wrap a store answer, picking up any status hint it carries."""
        return cls(
            resource=resource,
            status=status,
            headers=headers or {},
            suggested_status=status_hint(resource)
        )

    @property
    def effective_status(self) -> int:
        return self.suggested_status or self.status


def _outcome(severity: str, code: str, diagnostics: str) -> Dict[str, Any]:
    return {
        "resourceType": OPERATION_OUTCOME,
        "issue": [{
            "severity": severity,
            "code": code,
            "diagnostics": diagnostics,
        }]
    }


def _substitute(text: str, args: tuple) -> str:
    return text % args if "%s" in text else text


@dataclass(frozen=True)
class CannedResponse:
    """An OperationOutcome template and the status it is answered with."""
    template: Mapping[str, Any]
    status: int

    def instantiate(self, *args: Any) -> Dict[str, Any]:
        """Fill the %s placeholders of a fresh copy of the template."""
        outcome = copy.deepcopy(dict(self.template))
        args = tuple(str(arg) for arg in args)
        for issue in outcome.get("issue", []):
            if "diagnostics" in issue:
                issue["diagnostics"] = _substitute(issue["diagnostics"], args)
            details = issue.get("details")
            if details and "text" in details:
                details["text"] = _substitute(details["text"], args)
        return outcome


class CannedResponses:
    """
    Read-only registry of canned responses, built once at startup.

    Usage:
        canned = CannedResponses.from_settings(settings)
        result = canned.result("unknown_resource", "Foo", "Patient, Observation")
    """

    def __init__(self, responses: Dict[str, CannedResponse]):
        self._responses = MappingProxyType(dict(responses))

    def __getitem__(self, name: str) -> CannedResponse:
        return self._responses[name]

    def __contains__(self, name: str) -> bool:
        return name in self._responses

    def result(self, name: str, *args: Any, status: Optional[int] = None) -> FhirResult:
        """Instantiate a canned response as a FhirResult."""
        canned = self._responses[name]
        return FhirResult(resource=canned.instantiate(*args), status=status or canned.status)

    @classmethod
    def from_settings(cls, settings) -> "CannedResponses":
        return cls({
            "handle_missing_body": CannedResponse(
                _outcome("error", "required", "Request body is required for this interaction"), 400),
            "unparseable_body": CannedResponse(
                _outcome("error", "structure", "Could not parse request body: %s"), 400),
            "missing_criteria": CannedResponse(
                _outcome("error", "required", "Conditional %s requires search criteria"), 400),
            "unknown_resource": CannedResponse(
                _outcome("error", "not-supported",
                         "Unknown resource type '%s'. Known resource types are: %s"), 404),
            "already_exists": CannedResponse(
                _outcome("information", "duplicate",
                         "%s matching '%s' already exists, resource not created"), 200),
            "multiple_matches": CannedResponse(
                _outcome("error", "multiple-matches",
                         "Multiple %s resources match '%s', refusing to update"), 412),
            "nothing_to_delete": CannedResponse(
                _outcome("warning", "not-found", "No %s resources match '%s', nothing deleted"),
                settings.conditional_delete_missing_status),
            "deleted_resources": CannedResponse(
                _outcome("information", "informational", "Deleted %s %s resources matching '%s'"),
                settings.conditional_delete_multiple_status),
            "multiple_disallowed": CannedResponse(
                _outcome("error", "multiple-matches",
                         "Multiple %s resources match '%s' and deleting several resources at once is disabled"),
                412),
            "unlisted_matches": CannedResponse(
                _outcome("error", "exception",
                         "Search reported %s %s resources matching '%s' but returned none of them"), 500),
            "successful_operation": CannedResponse(
                _outcome("information", "informational", "Operation completed successfully"), 200),
            "internal_error": CannedResponse(
                _outcome("fatal", "exception", "An unexpected error occurred"), 500),
        })
