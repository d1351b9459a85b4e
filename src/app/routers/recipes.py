from __future__ import annotations

import logging
import re
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status

from src.app.deps import CurrentUser, get_current_user, get_session_registry
from src.app.domain.errors import (
    GatewayError,
    OwnershipError,
    RecipeNotFoundError,
    RecipeValidationError,
    StorageError,
)
from src.app.domain.models import ImportedRecipe
from src.app.schemas.recipes import (
    EditSessionResponse,
    ImageResponse,
    ImportRequest,
    ImportResponse,
    PatchResponse,
    RecipeDraftResponse,
    RecipePatch,
    SaveStatusResponse,
)
from src.app.services.recipe_editor import EditSessionRegistry, RecipeEditSession

log = logging.getLogger(__name__)

router = APIRouter(prefix="/recipes", tags=["recipes"])

MAX_IMAGE_BYTES = 10 * 1024 * 1024
_URL_RE = re.compile(r"https?://[^\s\"'<>]+", re.IGNORECASE)


def extract_first_url(text: str) -> Optional[str]:
    match = _URL_RE.search(text or "")
    return match.group(0) if match else None


def _raise_http(exc: Exception) -> NoReturn:
    if isinstance(exc, RecipeNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, OwnershipError):
        raise HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, RecipeValidationError):
        raise HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, (GatewayError, StorageError)):
        log.error("recipes.upstream_error error=%s", exc)
        raise HTTPException(status_code=502, detail=str(exc))
    raise exc


def _require_session(registry: EditSessionRegistry, recipe_id: str, user: CurrentUser) -> RecipeEditSession:
    session = registry.get(recipe_id, str(user.id))
    if session is None:
        raise HTTPException(status_code=404, detail="No open edit session for this recipe")
    return session


async def _session_or_open(registry: EditSessionRegistry, recipe_id: str, user: CurrentUser) -> RecipeEditSession:
    session = registry.get(recipe_id, str(user.id))
    if session is not None:
        return session
    session = registry.new_session(recipe_id, str(user.id))
    await session.open()
    return session


@router.post("/{recipe_id}/edit-session", response_model=EditSessionResponse)
async def open_edit_session(
    recipe_id: str,
    user: CurrentUser = Depends(get_current_user),
    registry: EditSessionRegistry = Depends(get_session_registry),
) -> EditSessionResponse:
    try:
        session = await registry.open(recipe_id, str(user.id))
    except Exception as exc:
        _raise_http(exc)
    return EditSessionResponse(
        recipe=RecipeDraftResponse.from_draft(session.draft),
        canEdit=session.can_edit,
        status=SaveStatusResponse.from_status(session.status),
    )


@router.patch("/{recipe_id}/edit-session", response_model=PatchResponse)
async def patch_edit_session(
    recipe_id: str,
    payload: RecipePatch,
    user: CurrentUser = Depends(get_current_user),
    registry: EditSessionRegistry = Depends(get_session_registry),
) -> PatchResponse:
    session = _require_session(registry, recipe_id, user)
    try:
        touched = session.apply_changes(payload.to_changes())
    except Exception as exc:
        _raise_http(exc)
    return PatchResponse(updatedFields=touched, status=SaveStatusResponse.from_status(session.status))


@router.post("/{recipe_id}/edit-session/import", response_model=ImportResponse)
async def import_into_edit_session(
    recipe_id: str,
    payload: ImportRequest,
    user: CurrentUser = Depends(get_current_user),
    registry: EditSessionRegistry = Depends(get_session_registry),
) -> ImportResponse:
    url = extract_first_url(payload.url)
    if not url:
        raise HTTPException(status_code=400, detail="Paste a full link that starts with http(s)://")

    session = _require_session(registry, recipe_id, user)
    imported = ImportedRecipe(
        url=url,
        title=payload.title,
        ingredients=payload.ingredients,
        steps=payload.steps,
        image=payload.image,
    )
    try:
        touched = session.apply_import(imported)
    except Exception as exc:
        _raise_http(exc)
    return ImportResponse(
        updatedFields=touched,
        status=SaveStatusResponse.from_status(session.status),
        recipe=RecipeDraftResponse.from_draft(session.draft),
        imageCandidate=imported.image,
    )


@router.post("/{recipe_id}/edit-session/save", response_model=SaveStatusResponse)
async def save_edit_session(
    recipe_id: str,
    user: CurrentUser = Depends(get_current_user),
    registry: EditSessionRegistry = Depends(get_session_registry),
) -> SaveStatusResponse:
    session = _require_session(registry, recipe_id, user)
    try:
        save_status = await session.save_now()
    except Exception as exc:
        _raise_http(exc)
    return SaveStatusResponse.from_status(save_status)


@router.get("/{recipe_id}/edit-session/status", response_model=SaveStatusResponse)
async def get_edit_session_status(
    recipe_id: str,
    user: CurrentUser = Depends(get_current_user),
    registry: EditSessionRegistry = Depends(get_session_registry),
) -> SaveStatusResponse:
    session = _require_session(registry, recipe_id, user)
    return SaveStatusResponse.from_status(session.status)


@router.delete("/{recipe_id}/edit-session", status_code=status.HTTP_204_NO_CONTENT)
async def close_edit_session(
    recipe_id: str,
    user: CurrentUser = Depends(get_current_user),
    registry: EditSessionRegistry = Depends(get_session_registry),
) -> Response:
    if not registry.close(recipe_id, str(user.id)):
        raise HTTPException(status_code=404, detail="No open edit session for this recipe")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.put("/{recipe_id}/image", response_model=ImageResponse)
async def replace_recipe_image(
    recipe_id: str,
    request: Request,
    filename: str = "",
    user: CurrentUser = Depends(get_current_user),
    registry: EditSessionRegistry = Depends(get_session_registry),
) -> ImageResponse:
    data = await request.body()
    if not data:
        raise HTTPException(status_code=400, detail="No image data received")
    if len(data) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=413, detail="Image too large")

    content_type = request.headers.get("content-type")
    if content_type and not content_type.startswith("image/"):
        raise HTTPException(status_code=415, detail="Only image uploads are accepted")

    try:
        session = await _session_or_open(registry, recipe_id, user)
        url = await session.replace_image(data, filename, content_type)
    except Exception as exc:
        _raise_http(exc)
    return ImageResponse(imageUrl=url)


@router.delete("/{recipe_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_recipe(
    recipe_id: str,
    user: CurrentUser = Depends(get_current_user),
    registry: EditSessionRegistry = Depends(get_session_registry),
) -> Response:
    try:
        session = await _session_or_open(registry, recipe_id, user)
        registry.close(recipe_id, str(user.id))
        await session.delete_recipe()
    except Exception as exc:
        _raise_http(exc)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
