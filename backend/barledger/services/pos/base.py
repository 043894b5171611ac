"""Base class for POS sales clients.

This defines the interface the sales sync drives. To add a new POS vendor:
1. Create a new file in this directory
2. Subclass POSClient
3. Implement all abstract methods
4. Register the client with POSClientFactory
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional, Union

# Persists refreshed credentials; may be sync or async
CredentialsCallback = Callable[[dict], Union[None, Awaitable[None]]]


class POSClientError(Exception):
    """POS provider unreachable, rejected our credentials, or returned garbage."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


@dataclass
class POSLocation:
    """A restaurant/venue under one integration."""

    external_id: str
    name: str
    timezone: str
    closeout_hour: int


@dataclass
class POSSaleItem:
    """One raw line as the provider reports it (not yet aggregated)."""

    product_id: str
    quantity: Decimal
    unit_price: Decimal
    total_price: Decimal
    name: Optional[str] = None


@dataclass
class POSSale:
    """Normalized order from any POS system."""

    external_id: str
    timestamp: datetime
    total_amount: Decimal
    items: list[POSSaleItem] = field(default_factory=list)


class POSClient(ABC):
    """Abstract base class for POS sales clients."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Client name (e.g., 'toast')."""
        pass

    @abstractmethod
    async def get_locations(self) -> list[POSLocation]:
        """Locations this integration can read orders for."""
        pass

    @abstractmethod
    async def get_orders_by_business_date(self, location_id: str, business_date: str) -> list[Any]:
        """Raw orders for one business date (``yyyymmdd``)."""
        pass

    @abstractmethod
    async def get_orders_by_business_date_range(
        self, location_id: str, start_business_date: str, end_business_date: str
    ) -> list[Any]:
        """Raw orders for an inclusive range of business dates."""
        pass

    @abstractmethod
    async def get_orders(self, location_id: str, start: datetime, end: datetime) -> list[Any]:
        """Raw orders opened within a timestamp range."""
        pass

    @abstractmethod
    def convert_to_pos_sales(self, orders: list[Any]) -> list[POSSale]:
        """Normalize raw orders, dropping unpaid and voided ones."""
        pass


class POSClientFactory:
    """Factory for creating POS clients from an integration's type."""

    _clients: dict[str, type[POSClient]] = {}

    @classmethod
    def register(cls, pos_type: str) -> Callable[[type[POSClient]], type[POSClient]]:
        """Register a client class for ``pos_type``. Used as a decorator."""
        def decorator(client_class: type[POSClient]) -> type[POSClient]:
            cls._clients[pos_type.lower()] = client_class
            return client_class
        return decorator

    @classmethod
    def get(cls, pos_type: str) -> Optional[type[POSClient]]:
        return cls._clients.get((pos_type or "").lower())

    @classmethod
    def list_types(cls) -> list[str]:
        return list(cls._clients.keys())
