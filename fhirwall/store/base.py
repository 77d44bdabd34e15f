from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence

Resource = Dict[str, Any]


class ResourceStore(ABC):
    """
    Abstract base class for FHIR resource stores.

    Every call is a synchronous remote operation. Domain errors (not found,
    gone, precondition failed...) come back as OperationOutcome resources
    carrying an HTTP status hint, never as exceptions.
    """

    @abstractmethod
    def conformance(self) -> Resource:
        """Base CapabilityStatement of the store"""
        pass

    @abstractmethod
    def create(self, resource_type: str, resource: Resource) -> Resource:
        """Create a resource, the store assigns the id"""
        pass

    @abstractmethod
    def read(self, resource_type: str, resource_id: str) -> Resource:
        """Current version of a resource"""
        pass

    @abstractmethod
    def vread(self, resource_type: str, resource_id: str, version_id: str) -> Resource:
        """A specific version of a resource"""
        pass

    @abstractmethod
    def update(
        self,
        resource_type: str,
        resource_id: str,
        resource: Resource,
        if_match: Optional[str] = None
    ) -> Resource:
        """New version of a resource; if_match is the expected current version"""
        pass

    @abstractmethod
    def delete(self, resource_type: str, resource_id: str) -> Resource:
        """Delete a resource, returning the deleted resource or an outcome"""
        pass

    @abstractmethod
    def search(self, resource_type: str, query_string: str) -> Resource:
        """Searchset Bundle for a query string"""
        pass

    @abstractmethod
    def history(self, resource_type: str, resource_id: str) -> Resource:
        """History Bundle of a resource, newest version first"""
        pass

    @abstractmethod
    def list_search_parameters(self) -> Resource:
        """Bundle of every SearchParameter the store supports"""
        pass

    @abstractmethod
    def raw_query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Sequence[Any]]:
        """Run SQL directly against the store's database"""
        pass

    @abstractmethod
    def last_version_id(self, resource_type: str, resource_id: str) -> Optional[str]:
        """Version id of the most recent non-deleted version of a resource"""
        pass

    @abstractmethod
    def get_store_name(self) -> str:
        """Return store identifier"""
        pass
