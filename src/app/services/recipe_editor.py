from __future__ import annotations

import logging
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool

from src.app.domain.errors import OwnershipError, RecipeNotFoundError, StorageError
from src.app.domain.models import (
    RECIPES_COLLECTION,
    ImportedRecipe,
    RecipeDraft,
    SaveStatus,
)
from src.app.infra.db.base import PersistenceGateway
from src.app.infra.storage.base import StorageProvider, content_type_for, guess_extension
from src.app.services.autosave import (
    DEFAULT_DELAY_SECONDS,
    DEFAULT_SAVED_DISPLAY_SECONDS,
    AutosaveCoordinator,
    StatusListener,
)

logger = logging.getLogger(__name__)


class RecipeEditSession:
    """
    The editing surface for one recipe and one viewer.

    open() hydrates the draft and checks ownership; only then is the
    autosave coordinator allowed to arm. close() is the unmount.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        storage: Optional[StorageProvider],
        recipe_id: str,
        viewer_id: Optional[str],
        *,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        saved_display_seconds: float = DEFAULT_SAVED_DISPLAY_SECONDS,
        on_status: Optional[StatusListener] = None,
    ) -> None:
        self._gateway = gateway
        self._storage = storage
        self.recipe_id = recipe_id
        self.viewer_id = viewer_id
        self._delay_seconds = delay_seconds
        self._saved_display_seconds = saved_display_seconds
        self._on_status = on_status

        self.draft: Optional[RecipeDraft] = None
        self.owner_id: Optional[str] = None
        self.coordinator: Optional[AutosaveCoordinator] = None

    @property
    def can_edit(self) -> bool:
        return bool(self.viewer_id) and bool(self.owner_id) and self.viewer_id == self.owner_id

    @property
    def status(self) -> SaveStatus:
        if self.coordinator is None:
            return SaveStatus.idle()
        return self.coordinator.status

    async def open(self) -> RecipeDraft:
        record = await run_in_threadpool(self._gateway.fetch_by_id, RECIPES_COLLECTION, self.recipe_id)
        if record is None:
            raise RecipeNotFoundError(self.recipe_id)

        draft = RecipeDraft.from_record(record)
        self.owner_id = await run_in_threadpool(
            self._gateway.fetch_owner_id, RECIPES_COLLECTION, self.recipe_id
        )
        draft.owner_id = self.owner_id

        coordinator = AutosaveCoordinator(
            self._gateway,
            RECIPES_COLLECTION,
            draft,
            delay_seconds=self._delay_seconds,
            saved_display_seconds=self._saved_display_seconds,
            on_status=self._on_status,
        )
        coordinator.hydrated = True
        coordinator.can_edit = self.can_edit

        self.draft = draft
        self.coordinator = coordinator
        logger.info(
            "Opened edit session: recipe=%s viewer=%s can_edit=%s",
            self.recipe_id,
            self.viewer_id,
            self.can_edit,
        )
        return draft

    def apply_changes(self, changes: dict[str, Any]) -> list[str]:
        draft, coordinator = self._require_owner()
        touched = draft.apply_patch(changes)
        if touched:
            coordinator.notify_changed()
        return touched

    def apply_import(self, imported: ImportedRecipe) -> list[str]:
        draft, coordinator = self._require_owner()
        touched = imported.merge_into(draft)
        if touched:
            coordinator.notify_changed()
        logger.info(
            "Imported into recipe=%s ingredients=%d steps=%d",
            self.recipe_id,
            len(imported.ingredients),
            len(imported.steps),
        )
        return touched

    async def save_now(self) -> SaveStatus:
        _, coordinator = self._require_owner()
        return await coordinator.flush()

    async def replace_image(self, data: bytes, filename: str = "", content_type: Optional[str] = None) -> str:
        """
        Upload a new image, point the recipe at it, then remove the old object.

        The object to remove is taken from the stored row, not the draft. The
        row update is serialized with autosave, and the old object is only
        removed once the row holds the new URL. Removal is best-effort.
        """
        draft, coordinator = self._require_owner()
        if self._storage is None:
            raise StorageError("No storage provider configured")

        record = await run_in_threadpool(self._gateway.fetch_by_id, RECIPES_COLLECTION, self.recipe_id)
        if record is None:
            raise RecipeNotFoundError(self.recipe_id)
        previous = record.get("image_url")

        extension = guess_extension(filename)
        path = self._storage.generate_object_key(str(self.owner_id), self.recipe_id, extension)
        url = await run_in_threadpool(
            self._storage.upload, data, path, content_type or content_type_for(extension)
        )

        # Later snapshots must carry the new URL
        draft_image = draft.image_url
        draft.image_url = url
        try:
            await coordinator.write_fields({"image_url": url})
        except Exception:
            draft.image_url = draft_image
            await run_in_threadpool(self._storage.delete_object, path)
            raise

        if previous:
            old_path = self._storage.path_from_public_url(previous)
            if old_path and old_path != path:
                await run_in_threadpool(self._storage.delete_object, old_path)

        logger.info("Replaced image: recipe=%s path=%s", self.recipe_id, path)
        return url

    async def delete_recipe(self) -> None:
        draft, _ = self._require_owner()
        self.close()

        deleted = await run_in_threadpool(
            self._gateway.delete_by_id, RECIPES_COLLECTION, self.recipe_id, str(self.viewer_id)
        )
        if not deleted:
            raise RecipeNotFoundError(self.recipe_id)

        if self._storage is not None and draft.image_url:
            old_path = self._storage.path_from_public_url(draft.image_url)
            if old_path:
                await run_in_threadpool(self._storage.delete_object, old_path)

        logger.info("Deleted recipe=%s owner=%s", self.recipe_id, self.viewer_id)

    def close(self) -> None:
        if self.coordinator is not None:
            self.coordinator.close()

    def _require_owner(self) -> tuple[RecipeDraft, AutosaveCoordinator]:
        if self.draft is None or self.coordinator is None:
            raise RecipeNotFoundError(self.recipe_id)
        if not self.can_edit:
            raise OwnershipError(self.recipe_id)
        return self.draft, self.coordinator


class EditSessionRegistry:
    """Open edit sessions of this process, keyed by (viewer, recipe)."""

    def __init__(
        self,
        gateway: PersistenceGateway,
        storage: Optional[StorageProvider] = None,
        *,
        delay_seconds: float = DEFAULT_DELAY_SECONDS,
        saved_display_seconds: float = DEFAULT_SAVED_DISPLAY_SECONDS,
    ) -> None:
        self._gateway = gateway
        self._storage = storage
        self._delay_seconds = delay_seconds
        self._saved_display_seconds = saved_display_seconds
        self._sessions: dict[tuple[str, str], RecipeEditSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def new_session(self, recipe_id: str, viewer_id: Optional[str]) -> RecipeEditSession:
        return RecipeEditSession(
            self._gateway,
            self._storage,
            recipe_id,
            viewer_id,
            delay_seconds=self._delay_seconds,
            saved_display_seconds=self._saved_display_seconds,
        )

    async def open(self, recipe_id: str, viewer_id: str) -> RecipeEditSession:
        # Re-opening replaces the previous surface
        self.close(recipe_id, viewer_id)
        session = self.new_session(recipe_id, viewer_id)
        await session.open()
        # A concurrent open may have registered its own session meanwhile
        self.close(recipe_id, viewer_id)
        self._sessions[(viewer_id, recipe_id)] = session
        return session

    def get(self, recipe_id: str, viewer_id: str) -> Optional[RecipeEditSession]:
        return self._sessions.get((viewer_id, recipe_id))

    def close(self, recipe_id: str, viewer_id: str) -> bool:
        session = self._sessions.pop((viewer_id, recipe_id), None)
        if session is None:
            return False
        session.close()
        logger.info("Closed edit session: recipe=%s viewer=%s", recipe_id, viewer_id)
        return True

    def close_all(self) -> int:
        sessions = list(self._sessions.values())
        self._sessions.clear()
        for session in sessions:
            session.close()
        return len(sessions)
