# src/app/deps.py (singletons exposed as FastAPI dependencies)

from __future__ import annotations
from supabase import create_client, Client
from src.app.config import settings
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

from src.app.infra.db.supabase_gateway import SupabaseGateway
from src.app.infra.storage.base import StorageProvider
from src.app.infra.storage.r2_provider import R2StorageProvider
from src.app.infra.storage.supabase_provider import SupabaseStorageProvider
from src.app.services.recipe_editor import EditSessionRegistry

_client: Client | None = None
_registry: EditSessionRegistry | None = None

def get_supabase() -> Client:
    global _client
    if _client is None:
        _client = create_client(str(settings.SUPABASE_URL),
                                settings.SUPABASE_SERVICE_ROLE_KEY)
    return _client


def get_storage() -> StorageProvider:
    if settings.STORAGE_BACKEND == "r2":
        return R2StorageProvider(
            account_id=settings.R2_ACCOUNT_ID,
            access_key_id=settings.R2_ACCESS_KEY_ID,
            secret_access_key=settings.R2_SECRET_ACCESS_KEY,
            bucket_name=settings.R2_BUCKET_NAME,
            public_url=settings.R2_PUBLIC_URL,
        )
    return SupabaseStorageProvider(get_supabase(), settings.RECIPE_IMAGES_BUCKET)


def get_session_registry() -> EditSessionRegistry:
    global _registry
    if _registry is None:
        _registry = EditSessionRegistry(
            SupabaseGateway(get_supabase()),
            get_storage(),
            delay_seconds=settings.AUTOSAVE_DELAY_SECONDS,
            saved_display_seconds=settings.AUTOSAVE_SAVED_DISPLAY_SECONDS,
        )
    return _registry


def close_session_registry() -> int:
    global _registry
    if _registry is None:
        return 0
    closed = _registry.close_all()
    _registry = None
    return closed


auth_scheme = HTTPBearer(auto_error=False)

class CurrentUser(BaseModel):
    id: str
    email: str | None = None
    name: str | None = None

async def get_current_user(
    cred: HTTPAuthorizationCredentials | None = Depends(auth_scheme),
    supa: Client = Depends(get_supabase),
) -> CurrentUser:
    """
    Takes Authorization: Bearer <access_token> issued by Supabase,
    validates it against GoTrue and returns the minimal user data.
    """
    if cred is None or cred.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    token = cred.credentials
    try:
        res = supa.auth.get_user(token)
        user = res.user
        if not user:
            raise HTTPException(status_code=401, detail="Invalid token")

        # metadata may carry 'name' or 'username'
        name = None
        meta = getattr(user, "user_metadata", None) or {}
        if isinstance(meta, dict):
            name = meta.get("name") or meta.get("username")

        return CurrentUser(id=str(user.id), email=user.email, name=name)
    except HTTPException:
        raise
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid/expired token")
