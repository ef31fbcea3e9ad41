"""Interface of the remote data store the proctoring core talks to.

Records are plain dicts keyed by column name. Filters are equality matches;
a list, tuple or set value means "column IN values".
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional


class StoreError(Exception):
    """Raised when the store cannot complete a create/read/update call."""


class DataStore(ABC):

    @abstractmethod
    async def create(self, table: str, record: Dict[str, Any]) -> str:
        """Insert one record and return its id."""

    @abstractmethod
    async def read(self, table: str, filters: Optional[Dict[str, Any]] = None, order_by: Optional[str] = None) -> List[Dict[str, Any]]:
        """Return the records matching every filter."""

    @abstractmethod
    async def update(self, table: str, record_id: str, patch: Dict[str, Any]) -> None:
        """Apply ``patch`` to the record with ``record_id``."""
