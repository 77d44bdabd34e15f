"""
Process-wide FHIR context: settings plus everything built from them once
at startup (known resources, canned responses, codec, element definitions).
Handlers receive it through the get_context dependency and never modify it.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import FrozenSet

from .config import Settings, settings as default_settings
from .fhir.codec import FhirCodec
from .fhir.outcomes import CannedResponses
from .fhir.registry import build_registry
from .fhir.schema import ElementDefinitions


@dataclass(frozen=True)
class FhirContext:
    settings: Settings
    known_resources: FrozenSet[str]
    canned: CannedResponses
    codec: FhirCodec
    schema: ElementDefinitions


def build_context(settings: Settings) -> FhirContext:
    return FhirContext(
        settings=settings,
        known_resources=build_registry(settings.known_resources),
        canned=CannedResponses.from_settings(settings),
        codec=FhirCodec(),
        schema=ElementDefinitions(),
    )


@lru_cache
def get_context() -> FhirContext:
    """Context dependency for FastAPI endpoints (one instance per process)."""
    return build_context(default_settings)
