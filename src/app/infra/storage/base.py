# src/app/infra/storage/base.py
"""
Abstract base class for storage providers.
This interface allows easy swapping between different storage backends (Supabase Storage, R2, ...)
"""
from __future__ import annotations

import re
import time
from abc import ABC, abstractmethod
from typing import Optional
from uuid import uuid4


def guess_extension(source: str, default: str = "jpg") -> str:
    """Pick a file extension from a URI or filename, e.g. 'photo.PNG?x=1' -> 'png'."""
    match = re.search(r"\.([a-zA-Z0-9]{3,4})(?:\?|$)", source or "")
    return (match.group(1) if match else default).lower()


def content_type_for(extension: str) -> str:
    return "image/png" if extension.lower() == "png" else "image/jpeg"


class StorageProvider(ABC):
    """
    Abstract interface for object storage operations.

    Implementations:
    - SupabaseStorageProvider: Supabase Storage bucket with public URLs
    - R2StorageProvider: Cloudflare R2 (S3-compatible)
    """

    @abstractmethod
    def upload(
        self,
        data: bytes,
        path: str,
        content_type: str = "image/jpeg",
    ) -> str:
        """
        Upload bytes to a path in the bucket.

        Args:
            data: Raw object content
            path: The key/path where the object will be stored
            content_type: MIME type of the content

        Returns:
            The public URL of the stored object
        """
        pass

    @abstractmethod
    def delete_object(self, path: str) -> bool:
        """
        Delete an object from storage.

        Args:
            path: The key/path of the object to delete

        Returns:
            True if deletion was successful
        """
        pass

    @abstractmethod
    def path_from_public_url(self, url: str) -> Optional[str]:
        """
        Convert a public URL produced by this provider back to its path.

        Returns:
            The object path, or None if the URL does not belong to this bucket
        """
        pass

    def generate_object_key(
        self,
        owner_id: str,
        recipe_id: str,
        extension: str = "jpg",
    ) -> str:
        """
        Generate a standardized object key for a recipe image.

        Format: {owner_id}/{recipe_id}/images/{epoch_ms}-{uid}.{ext}
        """
        stamp = int(time.time() * 1000)
        unique_id = uuid4().hex[:8]
        safe_ext = re.sub(r"[^a-z0-9]", "", extension.lower()) or "jpg"
        return f"{owner_id}/{recipe_id}/images/{stamp}-{unique_id}.{safe_ext}"
