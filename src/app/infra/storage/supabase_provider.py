# src/app/infra/storage/supabase_provider.py
"""
Supabase Storage provider implementation.
Objects live in a public bucket, so uploads resolve to a public URL.
"""
from __future__ import annotations

import logging
from typing import Optional

from supabase import Client

from src.app.domain.errors import StorageUploadError
from src.app.infra.storage.base import StorageProvider

logger = logging.getLogger(__name__)

DEFAULT_BUCKET = "recipe-images"


class SupabaseStorageProvider(StorageProvider):
    def __init__(self, client: Client, bucket_name: str = DEFAULT_BUCKET):
        self._client = client
        self.bucket_name = bucket_name
        logger.info("SupabaseStorageProvider initialized: bucket=%s", self.bucket_name)

    def _bucket(self):
        return self._client.storage.from_(self.bucket_name)

    def upload(self, data: bytes, path: str, content_type: str = "image/jpeg") -> str:
        try:
            self._bucket().upload(
                path,
                data,
                {"content-type": content_type, "upsert": "false"},
            )
        except Exception as e:
            logger.error("Failed to upload to bucket=%s path=%s: %s", self.bucket_name, path, e)
            raise StorageUploadError(path, str(e)) from e

        url = self._bucket().get_public_url(path)
        logger.info("Uploaded object: bucket=%s path=%s size=%d bytes", self.bucket_name, path, len(data))
        return url

    def delete_object(self, path: str) -> bool:
        try:
            self._bucket().remove([path])
            logger.info("Deleted object: bucket=%s path=%s", self.bucket_name, path)
            return True
        except Exception as e:
            logger.error("Failed to delete object bucket=%s path=%s: %s", self.bucket_name, path, e)
            return False

    def path_from_public_url(self, url: str) -> Optional[str]:
        marker = f"/object/public/{self.bucket_name}/"
        if not url or marker not in url:
            return None
        path = url.split(marker, 1)[1].split("?", 1)[0]
        return path or None
