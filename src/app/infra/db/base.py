# src/app/infra/db/base.py
"""
Abstract base class for the persistence gateway.
This interface allows easy swapping between different database backends.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional


class PersistenceGateway(ABC):
    """
    Abstract interface for record CRUD against the remote store.

    Implementations:
    - SupabaseGateway: Postgres tables exposed through Supabase
    - Tests use in-memory stubs
    """

    @abstractmethod
    def fetch_by_id(
        self,
        collection: str,
        record_id: str,
    ) -> Optional[dict[str, Any]]:
        """
        Fetch a single record, including its ordered list fields.

        Args:
            collection: Table/collection name (e.g. "recipes")
            record_id: The record ID

        Returns:
            The record as a dict, or None if not found
        """
        pass

    @abstractmethod
    def update_by_id(
        self,
        collection: str,
        record_id: str,
        fields: dict[str, Any],
    ) -> None:
        """
        Write a full snapshot of fields to a record.
        Repeating the same call must leave the same stored state.

        Args:
            collection: Table/collection name
            record_id: The record ID
            fields: Field values to store, list fields included

        Raises:
            GatewayError: If the remote store rejects the write
        """
        pass

    @abstractmethod
    def fetch_owner_id(
        self,
        collection: str,
        record_id: str,
    ) -> Optional[str]:
        """
        Get the owner of a record.

        Args:
            collection: Table/collection name
            record_id: The record ID

        Returns:
            The owner's user ID, or None if unknown

        Raises:
            GatewayError: If the remote store cannot be reached
        """
        pass

    @abstractmethod
    def delete_by_id(
        self,
        collection: str,
        record_id: str,
        owner_id: str,
    ) -> bool:
        """
        Delete a record, matching on the owner as well as the ID.

        Args:
            collection: Table/collection name
            record_id: The record ID
            owner_id: Must be the owner

        Returns:
            True if a record was deleted
        """
        pass
