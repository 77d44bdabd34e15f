"""
Response Assembler

Turns a FhirResult into the HTTP response: status, headers and a body in
the negotiated representation. Errors and successful results take the
same path.
"""
from typing import Dict, Optional

from starlette.responses import Response

from .negotiation import Negotiation
from .outcomes import FhirResult, is_outcome

NO_CONTENT = 204


def prefer_return(prefer: Optional[str]) -> Optional[str]:
    """Value of the return= preference in a Prefer header."""
    if not prefer:
        return None
    for preference in prefer.split(","):
        name, _, value = preference.strip().partition("=")
        if name.strip().lower() == "return":
            return value.strip().strip('"').lower()
    return None


def _present(headers: Dict[str, Optional[str]]) -> Dict[str, str]:
    return {name: value for name, value in headers.items() if value is not None}


class ResponseAssembler:
    """Renders FhirResults with the codec and canned responses of a context."""

    def __init__(self, codec, canned):
        self.codec = codec
        self.canned = canned

    def assemble(
        self,
        result: FhirResult,
        negotiation: Negotiation,
        prefer: Optional[str] = None
    ) -> Response:
        status = result.effective_status
        headers = _present(result.headers)
        preference = prefer_return(prefer)

        if preference == "minimal" or status == NO_CONTENT or result.resource is None:
            return self._without_content_type(Response(status_code=status, headers=headers))

        resource = result.resource
        # Outcomes, errors included, are rendered as they are
        if preference == "operationoutcome" and not is_outcome(resource):
            resource = self.canned["successful_operation"].instantiate()

        body = self.codec.encode(resource, negotiation.output)
        return Response(
            content=body,
            status_code=status,
            headers=headers,
            media_type=negotiation.content_type
        )

    @staticmethod
    def _without_content_type(response: Response) -> Response:
        # Starlette may still add a Content-Type; an empty FHIR response must not carry one
        if "content-type" in response.headers:
            del response.headers["content-type"]
        return response
