"""Resource store backends"""
from .base import ResourceStore
from .factory import StoreFactory
from .sql import SqlStore
from .fhirbase import FhirbaseStore

__all__ = [
    "ResourceStore",
    "StoreFactory",
    "SqlStore",
    "FhirbaseStore",
]
