# src/app/domain/models.py
"""
Domain models for the recipe editor.
These are pure data structures with no infrastructure dependencies.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from src.app.domain.errors import RecipeValidationError

RECIPES_COLLECTION = "recipes"

# Fields owned by the edit surface. Every autosave cycle sends all of them.
TRACKED_FIELDS = (
    "title",
    "image_url",
    "ingredients",
    "steps",
    "is_private",
    "monetization_eligible",
    "source_url",
    "original_source_user",
    "minutes",
)


class SaveState(str, Enum):
    """Visible save state of an edit surface."""
    IDLE = "idle"
    SAVING = "saving"
    SAVED = "saved"
    ERROR = "error"


@dataclass(frozen=True)
class SaveStatus:
    state: SaveState = SaveState.IDLE
    message: Optional[str] = None

    @classmethod
    def idle(cls) -> "SaveStatus":
        return cls(SaveState.IDLE)

    @classmethod
    def saving(cls) -> "SaveStatus":
        return cls(SaveState.SAVING)

    @classmethod
    def saved(cls) -> "SaveStatus":
        return cls(SaveState.SAVED)

    @classmethod
    def error(cls, message: str) -> "SaveStatus":
        return cls(SaveState.ERROR, message)

    @property
    def is_error(self) -> bool:
        return self.state is SaveState.ERROR


@dataclass
class Ingredient:
    text: str


@dataclass
class Step:
    text: str
    seconds: Optional[int] = None


def _clean_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _ordered(items: Any) -> list[Any]:
    if not isinstance(items, list):
        return []
    if all(isinstance(item, dict) and "pos" in item for item in items):
        return sorted(items, key=lambda item: item.get("pos") or 0)
    return list(items)


def _to_ingredients(items: Any) -> list[Ingredient]:
    ingredients: list[Ingredient] = []
    for item in _ordered(items):
        if isinstance(item, Ingredient):
            ingredients.append(item)
        elif isinstance(item, dict):
            ingredients.append(Ingredient(text=str(item.get("text") or "")))
        elif item is not None:
            ingredients.append(Ingredient(text=str(item)))
    return ingredients


def _to_steps(items: Any) -> list[Step]:
    steps: list[Step] = []
    for item in _ordered(items):
        if isinstance(item, Step):
            steps.append(item)
        elif isinstance(item, dict):
            steps.append(Step(text=str(item.get("text") or ""), seconds=_to_int(item.get("seconds"))))
        elif item is not None:
            steps.append(Step(text=str(item)))
    return steps


@dataclass
class RecipeDraft:
    """
    In-memory draft of a recipe being edited.
    Hydrated once from the gateway, mutated in place by edits and
    persisted as a full snapshot of TRACKED_FIELDS.
    """
    id: str
    title: str = ""
    image_url: Optional[str] = None
    ingredients: list[Ingredient] = field(default_factory=list)
    steps: list[Step] = field(default_factory=list)
    is_private: bool = False
    monetization_eligible: bool = True
    source_url: Optional[str] = None
    original_source_user: Optional[str] = None
    minutes: Optional[int] = None

    # Fetched separately, never part of a snapshot
    owner_id: Optional[str] = None

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "RecipeDraft":
        """Build a draft from a gateway row, applying defaults for missing fields."""
        is_private = bool(record.get("is_private"))
        monetization = record.get("monetization_eligible")
        if is_private:
            monetization_eligible = False
        else:
            monetization_eligible = monetization if isinstance(monetization, bool) else True

        return cls(
            id=str(record["id"]),
            title=str(record.get("title") or ""),
            image_url=_clean_str(record.get("image_url")),
            ingredients=_to_ingredients(record.get("ingredients")),
            steps=_to_steps(record.get("steps")),
            is_private=is_private,
            monetization_eligible=monetization_eligible,
            source_url=_clean_str(record.get("source_url")),
            original_source_user=_clean_str(record.get("original_source_user")),
            minutes=_to_int(record.get("minutes")),
            owner_id=_clean_str(record.get("user_id")),
        )

    @property
    def effective_monetization(self) -> bool:
        # Private and imported recipes are never monetized
        if self.is_private or self.source_url:
            return False
        return self.monetization_eligible

    def validate(self) -> None:
        if not self.title.strip():
            raise RecipeValidationError("title", "Please add a title")

    def apply_patch(self, changes: dict[str, Any]) -> list[str]:
        """
        Apply user edits to the draft.
        Unknown keys are ignored. Returns the names of the fields touched.
        """
        touched: list[str] = []
        for name, value in changes.items():
            if name not in TRACKED_FIELDS:
                continue
            if name == "ingredients":
                value = _to_ingredients(value or [])
            elif name == "steps":
                value = _to_steps(value or [])
            elif name in ("is_private", "monetization_eligible"):
                value = bool(value)
            elif name == "minutes":
                value = _to_int(value)
            elif name == "title":
                value = "" if value is None else str(value)
            else:
                value = _clean_str(value)
            setattr(self, name, value)
            touched.append(name)
        return touched

    def snapshot(self) -> dict[str, Any]:
        """Full snapshot of the tracked fields, normalized for persistence."""
        steps = [
            {"text": step.text.strip(), "seconds": step.seconds}
            for step in self.steps
            if step.text.strip()
        ]
        return {
            "title": self.title.strip(),
            "image_url": _clean_str(self.image_url),
            "ingredients": [ingredient.text for ingredient in self.ingredients],
            "steps": steps,
            "is_private": self.is_private,
            "monetization_eligible": self.effective_monetization,
            "source_url": _clean_str(self.source_url),
            "original_source_user": self.original_source_user,
            "minutes": self.minutes,
        }

    def to_dict(self) -> dict[str, Any]:
        data = self.snapshot()
        data["id"] = self.id
        data["owner_id"] = self.owner_id
        data["title"] = self.title
        data["monetization_eligible"] = self.monetization_eligible
        return data


@dataclass
class ImportedRecipe:
    """Metadata pulled from a shared link, ready to merge into a draft."""
    url: str
    title: Optional[str] = None
    ingredients: list[str] = field(default_factory=list)
    steps: list[str] = field(default_factory=list)
    image: Optional[str] = None

    def merge_into(self, draft: RecipeDraft) -> list[str]:
        """
        Merge into a draft: the title only fills an empty title, non-empty
        lists replace the draft lists and the link becomes the source URL.
        """
        changes: dict[str, Any] = {"source_url": self.url}
        if self.title and not draft.title.strip():
            changes["title"] = self.title
        if self.ingredients:
            changes["ingredients"] = list(self.ingredients)
        if self.steps:
            changes["steps"] = [{"text": str(text), "seconds": None} for text in self.steps]
        return draft.apply_patch(changes)
