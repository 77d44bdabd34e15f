"""
Protocol errors raised before a handler reaches the store.

Each error carries the FhirResult (a canned OperationOutcome) it should be
answered with; the handlers registered in main.py render it through the
normal response assembler.
"""
from .fhir.outcomes import FhirResult
from .fhir.registry import describe


class FhirError(Exception):
    """Base class for errors answered with an OperationOutcome."""

    def __init__(self, result: FhirResult):
        self.result = result
        super().__init__(self._message())

    def _message(self) -> str:
        issues = (self.result.resource or {}).get("issue") or [{}]
        return issues[0].get("diagnostics", "FHIR error")


class UnknownResourceTypeError(FhirError):
    """The path names a resource type this deployment does not serve."""

    def __init__(self, resource_type: str, context):
        super().__init__(context.canned.result(
            "unknown_resource", resource_type, describe(context.known_resources)))


class MissingBodyError(FhirError):
    """A create/update arrived without a body."""

    def __init__(self, context):
        super().__init__(context.canned.result("handle_missing_body"))


class UnparseableBodyError(FhirError):
    """The body could not be decoded in its declared or sniffed format."""

    def __init__(self, reason: str, context):
        super().__init__(context.canned.result("unparseable_body", reason))


class MissingCriteriaError(FhirError):
    """A conditional update/delete arrived without search criteria."""

    def __init__(self, interaction: str, context):
        super().__init__(context.canned.result("missing_criteria", interaction))
