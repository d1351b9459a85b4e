from __future__ import annotations

import asyncio
import copy
import time
from typing import Any, Optional

import pytest

from src.app.domain.errors import GatewayError, OwnershipError, RecipeNotFoundError, StorageError
from src.app.domain.models import ImportedRecipe, SaveState
from src.app.infra.storage.base import StorageProvider
from src.app.services.recipe_editor import EditSessionRegistry, RecipeEditSession

OWNER_ID = "user-owner"
OTHER_ID = "user-other"
BUCKET_URL = "https://cdn.example.com/object/public/recipe-images"


class GatewayStub:
    def __init__(self) -> None:
        self.records: dict[str, dict[str, Any]] = {
            "r1": {
                "id": "r1",
                "user_id": OWNER_ID,
                "title": "Pancakes",
                "image_url": f"{BUCKET_URL}/{OWNER_ID}/r1/images/old.jpg",
                "ingredients": [{"pos": 1, "text": "milk"}, {"pos": 0, "text": "flour"}],
                "steps": [{"pos": 0, "text": "Mix", "seconds": None}],
                "is_private": False,
                "monetization_eligible": True,
            }
        }
        self.update_calls: list[tuple[str, str, dict[str, Any]]] = []
        self.deleted: list[tuple[str, str, str]] = []

    def fetch_by_id(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        record = self.records.get(record_id)
        return copy.deepcopy(record) if record else None

    def fetch_owner_id(self, collection: str, record_id: str) -> Optional[str]:
        record = self.records.get(record_id)
        return record.get("user_id") if record else None

    def update_by_id(self, collection: str, record_id: str, fields: dict[str, Any]) -> None:
        self.update_calls.append((collection, record_id, copy.deepcopy(fields)))
        self.records[record_id].update(copy.deepcopy(fields))

    def delete_by_id(self, collection: str, record_id: str, owner_id: str) -> bool:
        self.deleted.append((collection, record_id, owner_id))
        record = self.records.get(record_id)
        if record is None or record.get("user_id") != owner_id:
            return False
        del self.records[record_id]
        return True


class StorageStub(StorageProvider):
    def __init__(self) -> None:
        self.uploaded: list[tuple[str, int, str]] = []
        self.deleted: list[str] = []

    def upload(self, data: bytes, path: str, content_type: str = "image/jpeg") -> str:
        self.uploaded.append((path, len(data), content_type))
        return f"{BUCKET_URL}/{path}"

    def delete_object(self, path: str) -> bool:
        self.deleted.append(path)
        return True

    def path_from_public_url(self, url: str) -> Optional[str]:
        prefix = f"{BUCKET_URL}/"
        return url[len(prefix):] if url.startswith(prefix) else None


class SlowGatewayStub(GatewayStub):
    """Autosave writes and reads take a while; every write is logged to a shared event list."""

    def __init__(self, events: list[str], write_seconds: float = 0.3, read_seconds: float = 0.0) -> None:
        super().__init__()
        self.events = events
        self.write_seconds = write_seconds
        self.read_seconds = read_seconds
        self.fail_image_write = False

    def fetch_by_id(self, collection: str, record_id: str) -> Optional[dict[str, Any]]:
        time.sleep(self.read_seconds)
        return super().fetch_by_id(collection, record_id)

    def update_by_id(self, collection: str, record_id: str, fields: dict[str, Any]) -> None:
        if "title" in fields:
            time.sleep(self.write_seconds)
        elif self.fail_image_write:
            raise GatewayError("update", "Simulated failure")
        super().update_by_id(collection, record_id, fields)
        self.events.append(f"stored image_url={fields.get('image_url')}")


class SlowStorageStub(StorageStub):
    def __init__(self, events: list[str], upload_seconds: float = 0.1) -> None:
        super().__init__()
        self.events = events
        self.upload_seconds = upload_seconds

    def upload(self, data: bytes, path: str, content_type: str = "image/jpeg") -> str:
        time.sleep(self.upload_seconds)
        return super().upload(data, path, content_type)

    def delete_object(self, path: str) -> bool:
        self.events.append(f"deleted {path}")
        return super().delete_object(path)


def _session(gateway: GatewayStub, viewer_id: Optional[str], storage: Optional[StorageProvider] = None) -> RecipeEditSession:
    return RecipeEditSession(
        gateway,
        storage,
        "r1",
        viewer_id,
        delay_seconds=0.05,
        saved_display_seconds=10.0,
    )


class TestOpen:
    def test_open_hydrates_draft_and_grants_owner(self) -> None:
        gateway = GatewayStub()
        session = _session(gateway, OWNER_ID)

        draft = asyncio.run(session.open())

        assert draft.title == "Pancakes"
        assert [i.text for i in draft.ingredients] == ["flour", "milk"]
        assert draft.owner_id == OWNER_ID
        assert session.can_edit is True
        assert session.coordinator is not None
        assert session.coordinator.enabled is True
        assert session.status.state is SaveState.IDLE

    def test_open_missing_recipe_raises(self) -> None:
        gateway = GatewayStub()
        session = RecipeEditSession(gateway, None, "missing", OWNER_ID)

        with pytest.raises(RecipeNotFoundError):
            asyncio.run(session.open())

    def test_non_owner_cannot_edit(self) -> None:
        gateway = GatewayStub()
        session = _session(gateway, OTHER_ID)
        asyncio.run(session.open())

        assert session.can_edit is False
        assert session.coordinator.enabled is False
        with pytest.raises(OwnershipError):
            session.apply_changes({"title": "Stolen"})
        assert gateway.update_calls == []

    def test_anonymous_viewer_cannot_edit(self) -> None:
        gateway = GatewayStub()
        session = _session(gateway, None)
        asyncio.run(session.open())

        assert session.can_edit is False

    def test_changes_before_open_are_rejected(self) -> None:
        session = _session(GatewayStub(), OWNER_ID)

        with pytest.raises(RecipeNotFoundError):
            session.apply_changes({"title": "Too early"})


class TestEditing:
    def test_changes_are_autosaved(self) -> None:
        gateway = GatewayStub()
        session = _session(gateway, OWNER_ID)

        async def scenario() -> list[str]:
            await session.open()
            touched = session.apply_changes({"title": "Pancakes v2", "unknown": "ignored"})
            await asyncio.sleep(0.2)
            session.close()
            return touched

        touched = asyncio.run(scenario())

        assert touched == ["title"]
        assert len(gateway.update_calls) == 1
        assert gateway.update_calls[0][2]["title"] == "Pancakes v2"
        assert gateway.update_calls[0][2]["ingredients"] == ["flour", "milk"]

    def test_unknown_fields_only_do_not_arm(self) -> None:
        gateway = GatewayStub()
        session = _session(gateway, OWNER_ID)

        async def scenario() -> bool:
            await session.open()
            session.apply_changes({"likes_count": 10})
            return session.coordinator.is_armed

        assert asyncio.run(scenario()) is False

    def test_save_now_flushes_immediately(self) -> None:
        gateway = GatewayStub()
        session = _session(gateway, OWNER_ID)

        async def scenario():
            await session.open()
            session.apply_changes({"minutes": "25"})
            return await session.save_now()

        status = asyncio.run(scenario())

        assert status.state is SaveState.SAVED
        assert len(gateway.update_calls) == 1
        assert gateway.records["r1"]["minutes"] == 25

    def test_import_merges_and_disables_monetization(self) -> None:
        gateway = GatewayStub()
        session = _session(gateway, OWNER_ID)
        imported = ImportedRecipe(
            url="https://www.tiktok.com/@chef/video/1",
            title="Imported title",
            ingredients=["eggs", "sugar"],
            steps=["Whisk", "Bake"],
        )

        async def scenario() -> list[str]:
            await session.open()
            touched = session.apply_import(imported)
            await session.save_now()
            return touched

        touched = asyncio.run(scenario())

        assert "title" not in touched
        fields = gateway.update_calls[-1][2]
        assert fields["title"] == "Pancakes"
        assert fields["ingredients"] == ["eggs", "sugar"]
        assert fields["steps"] == [{"text": "Whisk", "seconds": None}, {"text": "Bake", "seconds": None}]
        assert fields["source_url"] == "https://www.tiktok.com/@chef/video/1"
        assert fields["monetization_eligible"] is False


class TestImages:
    def test_replace_image_uploads_updates_and_removes_old(self) -> None:
        gateway = GatewayStub()
        storage = StorageStub()
        session = _session(gateway, OWNER_ID, storage)

        async def scenario() -> str:
            await session.open()
            return await session.replace_image(b"\x89PNG....", "photo.png")

        url = asyncio.run(scenario())

        path, size, content_type = storage.uploaded[0]
        assert path.startswith(f"{OWNER_ID}/r1/images/")
        assert path.endswith(".png")
        assert content_type == "image/png"
        assert url == f"{BUCKET_URL}/{path}"
        assert gateway.records["r1"]["image_url"] == url
        assert session.draft.image_url == url
        assert storage.deleted == [f"{OWNER_ID}/r1/images/old.jpg"]

    def test_replace_image_waits_for_autosave_in_flight(self) -> None:
        events: list[str] = []
        gateway = SlowGatewayStub(events)
        storage = SlowStorageStub(events)
        session = _session(gateway, OWNER_ID, storage)
        old_url = f"{BUCKET_URL}/{OWNER_ID}/r1/images/old.jpg"

        async def scenario() -> str:
            await session.open()
            session.apply_changes({"title": "Pancakes v2"})
            # The debounce fires during the upload and writes the old image_url
            url = await session.replace_image(b"img", "a.png")
            await session.coordinator.wait_for_write()
            await asyncio.sleep(0.1)
            session.close()
            return url

        url = asyncio.run(scenario())

        assert gateway.records["r1"]["image_url"] == url
        assert gateway.records["r1"]["title"] == "Pancakes v2"
        assert events == [
            f"stored image_url={old_url}",
            f"stored image_url={url}",
            f"deleted {OWNER_ID}/r1/images/old.jpg",
        ]

    def test_replace_image_keeps_pending_edits(self) -> None:
        events: list[str] = []
        gateway = SlowGatewayStub(events, write_seconds=0.0)
        storage = SlowStorageStub(events, upload_seconds=0.0)
        session = _session(gateway, OWNER_ID, storage)

        async def scenario() -> str:
            await session.open()
            session.apply_changes({"title": "Pancakes v2"})
            url = await session.replace_image(b"img", "a.png")
            assert session.coordinator.is_armed is True
            await asyncio.sleep(0.2)
            session.close()
            return url

        url = asyncio.run(scenario())

        assert gateway.update_calls[0][2] == {"image_url": url}
        assert gateway.update_calls[1][2]["title"] == "Pancakes v2"
        assert gateway.update_calls[1][2]["image_url"] == url

    def test_replace_image_removes_the_stored_image(self) -> None:
        gateway = GatewayStub()
        storage = StorageStub()
        session = _session(gateway, OWNER_ID, storage)

        async def scenario() -> str:
            await session.open()
            # Changed elsewhere after this session was hydrated
            gateway.records["r1"]["image_url"] = f"{BUCKET_URL}/{OWNER_ID}/r1/images/newer.jpg"
            return await session.replace_image(b"img", "a.png")

        url = asyncio.run(scenario())

        assert gateway.records["r1"]["image_url"] == url
        assert storage.deleted == [f"{OWNER_ID}/r1/images/newer.jpg"]

    def test_failed_image_write_keeps_old_image(self) -> None:
        events: list[str] = []
        gateway = SlowGatewayStub(events)
        gateway.fail_image_write = True
        storage = SlowStorageStub(events, upload_seconds=0.0)
        session = _session(gateway, OWNER_ID, storage)
        old_url = f"{BUCKET_URL}/{OWNER_ID}/r1/images/old.jpg"

        async def scenario() -> None:
            await session.open()
            await session.replace_image(b"img", "a.png")

        with pytest.raises(GatewayError):
            asyncio.run(scenario())

        new_path = storage.uploaded[0][0]
        assert gateway.records["r1"]["image_url"] == old_url
        assert session.draft.image_url == old_url
        assert storage.deleted == [new_path]

    def test_replace_image_requires_owner(self) -> None:
        gateway = GatewayStub()
        storage = StorageStub()
        session = _session(gateway, OTHER_ID, storage)

        async def scenario() -> None:
            await session.open()
            await session.replace_image(b"data", "photo.jpg")

        with pytest.raises(OwnershipError):
            asyncio.run(scenario())
        assert storage.uploaded == []

    def test_replace_image_without_storage(self) -> None:
        session = _session(GatewayStub(), OWNER_ID)

        async def scenario() -> None:
            await session.open()
            await session.replace_image(b"data", "photo.jpg")

        with pytest.raises(StorageError):
            asyncio.run(scenario())


class TestDelete:
    def test_owner_can_delete(self) -> None:
        gateway = GatewayStub()
        storage = StorageStub()
        session = _session(gateway, OWNER_ID, storage)

        async def scenario() -> None:
            await session.open()
            session.apply_changes({"title": "About to go"})
            await session.delete_recipe()
            await asyncio.sleep(0.2)

        asyncio.run(scenario())

        assert "r1" not in gateway.records
        assert gateway.deleted == [("recipes", "r1", OWNER_ID)]
        # The pending autosave was cancelled by the delete
        assert gateway.update_calls == []
        assert storage.deleted == [f"{OWNER_ID}/r1/images/old.jpg"]

    def test_non_owner_cannot_delete(self) -> None:
        gateway = GatewayStub()
        session = _session(gateway, OTHER_ID)

        async def scenario() -> None:
            await session.open()
            await session.delete_recipe()

        with pytest.raises(OwnershipError):
            asyncio.run(scenario())
        assert "r1" in gateway.records


class TestRegistry:
    def test_open_get_and_close(self) -> None:
        registry = EditSessionRegistry(GatewayStub(), delay_seconds=0.05)

        async def scenario() -> RecipeEditSession:
            return await registry.open("r1", OWNER_ID)

        session = asyncio.run(scenario())

        assert registry.get("r1", OWNER_ID) is session
        assert registry.get("r1", OTHER_ID) is None
        assert len(registry) == 1
        assert registry.close("r1", OWNER_ID) is True
        assert registry.close("r1", OWNER_ID) is False
        assert session.coordinator.closed is True

    def test_reopen_replaces_previous_session(self) -> None:
        registry = EditSessionRegistry(GatewayStub())

        async def scenario() -> tuple[RecipeEditSession, RecipeEditSession]:
            first = await registry.open("r1", OWNER_ID)
            second = await registry.open("r1", OWNER_ID)
            return first, second

        first, second = asyncio.run(scenario())

        assert first is not second
        assert first.coordinator.closed is True
        assert registry.get("r1", OWNER_ID) is second

    def test_concurrent_opens_close_the_replaced_session(self) -> None:
        registry = EditSessionRegistry(SlowGatewayStub([], read_seconds=0.1))

        async def scenario() -> list[RecipeEditSession]:
            return list(await asyncio.gather(registry.open("r1", OWNER_ID), registry.open("r1", OWNER_ID)))

        sessions = asyncio.run(scenario())

        assert len(registry) == 1
        kept = registry.get("r1", OWNER_ID)
        assert kept in sessions
        assert kept.coordinator.closed is False
        assert [s.coordinator.closed for s in sessions if s is not kept] == [True]

    def test_close_all_cancels_pending_saves(self) -> None:
        gateway = GatewayStub()
        registry = EditSessionRegistry(gateway, delay_seconds=0.05)

        async def scenario() -> int:
            session = await registry.open("r1", OWNER_ID)
            session.apply_changes({"title": "Never saved"})
            closed = registry.close_all()
            await asyncio.sleep(0.2)
            return closed

        assert asyncio.run(scenario()) == 1
        assert len(registry) == 0
        assert gateway.update_calls == []
