"""
FHIR Interaction Module

Protocol-level building blocks shared by the REST handlers.

Components:
- negotiation: json/xml format negotiation
- codec: wire format encoding/decoding
- outcomes: FhirResult and canned OperationOutcomes
- assembler: HTTP response rendering
- versioning: ETag / Last-Modified / Location headers
- summary: _summary projections
- capability: CapabilityStatement augmentation
- bundles: Bundle fullUrl enrichment
- registry: known resource types
- schema: element definitions lookup
"""
from .assembler import ResponseAssembler
from .codec import FhirCodec, CodecError
from .negotiation import Negotiation
from .outcomes import FhirResult, CannedResponses
from .schema import ElementDefinitions
from .summary import SummaryProjector

__all__ = [
    "ResponseAssembler",
    "FhirCodec",
    "CodecError",
    "Negotiation",
    "FhirResult",
    "CannedResponses",
    "ElementDefinitions",
    "SummaryProjector",
]
