"""Factory for creating resource stores from configuration"""
from sqlalchemy.orm import Session

from .base import ResourceStore
from .sql import SqlStore
from .fhirbase import FhirbaseStore


class StoreFactory:
    """
    Factory for creating resource stores from settings.

    Supported backends:
    - sql: versioned resource table managed by SQLAlchemy (SQLite, PostgreSQL...)
    - fhirbase: fhirbase stored procedures in PostgreSQL
    """

    @staticmethod
    def create(db: Session, context) -> ResourceStore:
        """
        Create a store bound to a database session.

        Raises:
            ValueError: If the configured backend is not supported
        """
        backend = context.settings.store_backend.lower()

        if backend == "sql":
            return SqlStore(
                db,
                known_resources=context.known_resources,
                fhir_version=context.settings.fhir_version,
                software=context.settings.app_name
            )
        elif backend == "fhirbase":
            return FhirbaseStore(db)
        else:
            raise ValueError(f"Unsupported store backend: {backend}. Supported: 'sql', 'fhirbase'")
