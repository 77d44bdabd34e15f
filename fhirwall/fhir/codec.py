"""
Resource Codec

Reads and writes resources in either wire format. JSON is handled
directly; XML goes through the fhir.resources model classes.
"""
import json
from typing import Any, Dict, Union

from fhir.resources import get_fhir_model_class
from lxml import etree

from .negotiation import XML


class CodecError(ValueError):
    """Raised when a resource cannot be decoded or encoded."""


def _xml_resource_type(data: bytes) -> str:
    root = etree.fromstring(data)
    return etree.QName(root).localname


class FhirCodec:
    """Converts between wire bytes and resource dictionaries."""

    def decode(self, data: Union[bytes, str], fmt: str) -> Dict[str, Any]:
        """
        Parse a request body.

        Raises:
            CodecError: If the body is not a valid resource in the given format
        """
        if isinstance(data, str):
            data = data.encode("utf-8")

        try:
            if fmt == XML:
                model_class = get_fhir_model_class(_xml_resource_type(data))
                model = model_class.model_validate_xml(data)
                return json.loads(model.model_dump_json(by_alias=True, exclude_none=True))
            resource = json.loads(data)
        except CodecError:
            raise
        except Exception as e:
            raise CodecError(str(e)) from e

        if not isinstance(resource, dict) or "resourceType" not in resource:
            raise CodecError("body is not a FHIR resource (no resourceType)")
        return resource

    def encode(self, resource: Dict[str, Any], fmt: str) -> str:
        """Render a resource in the given format."""
        if fmt == XML:
            try:
                model_class = get_fhir_model_class(resource["resourceType"])
                rendered = model_class.model_validate(resource).model_dump_xml()
            except Exception as e:
                raise CodecError(str(e)) from e
            return rendered.decode("utf-8") if isinstance(rendered, bytes) else rendered
        return json.dumps(resource)
