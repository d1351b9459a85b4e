from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from src.app.domain.models import RecipeDraft, SaveStatus

SaveStateName = Literal["idle", "saving", "saved", "error"]


class StepItem(BaseModel):
    text: str
    seconds: Optional[int] = Field(default=None, ge=0)


class SaveStatusResponse(BaseModel):
    state: SaveStateName
    message: Optional[str] = None

    @classmethod
    def from_status(cls, status: SaveStatus) -> "SaveStatusResponse":
        return cls(state=status.state.value, message=status.message)


class RecipeDraftResponse(BaseModel):
    id: str
    ownerId: Optional[str] = None
    title: str
    imageUrl: Optional[str] = None
    ingredients: list[str] = Field(default_factory=list)
    steps: list[StepItem] = Field(default_factory=list)
    isPrivate: bool = False
    monetizationEligible: bool = True
    monetizationEffective: bool = True
    sourceUrl: Optional[str] = None
    originalSourceUser: Optional[str] = None
    minutes: Optional[int] = None

    @classmethod
    def from_draft(cls, draft: RecipeDraft) -> "RecipeDraftResponse":
        return cls(
            id=draft.id,
            ownerId=draft.owner_id,
            title=draft.title,
            imageUrl=draft.image_url,
            ingredients=[ingredient.text for ingredient in draft.ingredients],
            steps=[StepItem(text=step.text, seconds=step.seconds) for step in draft.steps],
            isPrivate=draft.is_private,
            monetizationEligible=draft.monetization_eligible,
            monetizationEffective=draft.effective_monetization,
            sourceUrl=draft.source_url,
            originalSourceUser=draft.original_source_user,
            minutes=draft.minutes,
        )


class EditSessionResponse(BaseModel):
    recipe: RecipeDraftResponse
    canEdit: bool
    status: SaveStatusResponse


class RecipePatch(BaseModel):
    title: Optional[str] = Field(default=None, max_length=200)
    imageUrl: Optional[str] = None
    ingredients: Optional[list[str]] = None
    steps: Optional[list[StepItem]] = None
    isPrivate: Optional[bool] = None
    monetizationEligible: Optional[bool] = None
    sourceUrl: Optional[str] = None
    originalSourceUser: Optional[str] = None
    minutes: Optional[int] = Field(default=None, ge=0)

    def to_changes(self) -> dict:
        """Map the camelCase payload to draft field names, keeping only what was sent."""
        mapping = {
            "title": "title",
            "imageUrl": "image_url",
            "ingredients": "ingredients",
            "steps": "steps",
            "isPrivate": "is_private",
            "monetizationEligible": "monetization_eligible",
            "sourceUrl": "source_url",
            "originalSourceUser": "original_source_user",
            "minutes": "minutes",
        }
        sent = self.model_dump(exclude_unset=True)
        return {mapping[key]: value for key, value in sent.items() if key in mapping}


class PatchResponse(BaseModel):
    updatedFields: list[str] = Field(default_factory=list)
    status: SaveStatusResponse


class ImportRequest(BaseModel):
    url: str = Field(..., min_length=1)
    title: Optional[str] = None
    ingredients: list[str] = Field(default_factory=list)
    steps: list[str] = Field(default_factory=list)
    image: Optional[str] = None


class ImportResponse(PatchResponse):
    recipe: RecipeDraftResponse
    imageCandidate: Optional[str] = None


class ImageResponse(BaseModel):
    imageUrl: str
