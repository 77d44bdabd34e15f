"""
Format Negotiation

Decides which representation (json or xml) a request body is written in
and which representation the response should use.

Priority for the response format:
1. _format query parameter
2. Accept header
3. json

Request bodies are read by Content-Type, falling back to sniffing the
body itself when the header is missing or unknown.
"""
from dataclasses import dataclass
from typing import Optional, Union

JSON = "json"
XML = "xml"

FHIR_NAMESPACE = "http://hl7.org/fhir"

# MIME types and _format shorthands mapped to the representation they select
MIME_TYPES = {
    "application/json": JSON,
    "application/json+fhir": JSON,
    "application/fhir+json": JSON,
    "json": JSON,
    "application/xml": XML,
    "application/xml+fhir": XML,
    "application/fhir+xml": XML,
    "text/xml": XML,
    "xml": XML,
    "html": XML,
    "text/html": XML,
}

CONTENT_TYPES = {
    JSON: "application/fhir+json",
    XML: "application/fhir+xml",
}


def lookup_format(value: Optional[str]) -> Optional[str]:
    """
    Map a MIME type or shorthand to json/xml.

    Parameters after ';' (charset, fhirVersion) are ignored. Returns None
    when the value is missing or not in the table.
    """
    if not value:
        return None
    mime = value.split(";", 1)[0].strip().lower()
    return MIME_TYPES.get(mime)


def output_format(accept: Optional[str] = None, format_param: Optional[str] = None) -> str:
    """Representation to render the response in."""
    return lookup_format(format_param) or lookup_format(accept) or JSON


def input_format(content_type: Optional[str] = None, body: Union[bytes, str, None] = None) -> str:
    """Representation the request body is written in."""
    fmt = lookup_format(content_type)
    if fmt:
        return fmt

    if body:
        text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
        if FHIR_NAMESPACE in text:
            return XML
        if "resourceType" in text:
            return JSON

    return JSON


def wants_utf8(accept: Optional[str] = None, accept_charset: Optional[str] = None) -> bool:
    """True when the client asked for UTF-8 in Accept or Accept-Charset."""
    return any("utf-8" in header.lower() for header in (accept, accept_charset) if header)


def content_type_for(fmt: str, utf8: bool = False) -> str:
    content_type = CONTENT_TYPES.get(fmt, CONTENT_TYPES[JSON])
    if utf8:
        content_type += ";charset=UTF-8"
    return content_type


@dataclass(frozen=True)
class Negotiation:
    """Negotiated representation for one request."""
    output: str = JSON
    utf8: bool = False

    @property
    def content_type(self) -> str:
        return content_type_for(self.output, self.utf8)

    @classmethod
    def from_request(cls, request) -> "Negotiation":
        headers = request.headers
        return cls(
            output=output_format(headers.get("accept"), request.query_params.get("_format")),
            utf8=wants_utf8(headers.get("accept"), headers.get("accept-charset")),
        )
