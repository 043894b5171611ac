# POS integration module

from typing import Optional

import httpx

from barledger.services.pos.base import (
    CredentialsCallback,
    POSClient,
    POSClientError,
    POSClientFactory,
    POSLocation,
    POSSale,
    POSSaleItem,
)
from barledger.services.pos.toast import ToastClient


def create_pos_client(
    pos_type: str,
    credentials: dict,
    on_credentials_update: Optional[CredentialsCallback] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> POSClient:
    """Build the client registered for ``pos_type``.

    Raises:
        ValueError: no client is registered for the type.
    """
    client_class = POSClientFactory.get(pos_type)
    if client_class is None:
        raise ValueError(
            f"Sales sync is not supported for POS type {pos_type!r} "
            f"(supported: {', '.join(POSClientFactory.list_types())})"
        )
    return client_class(credentials, on_credentials_update=on_credentials_update, transport=transport)


__all__ = [
    "CredentialsCallback",
    "POSClient",
    "POSClientError",
    "POSClientFactory",
    "POSLocation",
    "POSSale",
    "POSSaleItem",
    "ToastClient",
    "create_pos_client",
]
