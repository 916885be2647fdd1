"""Patch models: one encrypted conversation fragment inside a quilt."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator


class PatchTags(BaseModel):
    """Masked identifiers attached to a patch by the uploader.

    Values are masked (and often JSON-encoded) strings; use IdUnmasker to
    recover the originals.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str = Field(default="", alias="userId")
    chat_id: str = Field(default="", alias="chatId")
    submission_id: str = Field(default="", alias="submissionId")


class Patch(BaseModel):
    """
    Represents a single patch as listed by the blob service.

    Attributes:
        patch_id:   Address of the patch blob inside the quilt.
        identifier: Uploader-chosen name of the patch, if any.
        tags:       Masked user/chat/submission identifiers.
    """

    model_config = ConfigDict(extra="ignore")

    patch_id: str
    identifier: str | None = None
    tags: PatchTags = Field(default_factory=PatchTags)

    @model_validator(mode="before")
    @classmethod
    def _fill_patch_id(cls, data: Any) -> Any:
        # older listings only carry "id" or "identifier"
        if isinstance(data, dict) and not data.get("patch_id"):
            fallback = data.get("id") or data.get("identifier")
            if fallback:
                data = {**data, "patch_id": str(fallback)}
        return data


class UnmaskedTags(BaseModel):
    """Clear-text identifiers recovered from PatchTags. Empty strings mean unmasking failed."""

    user_id: str = ""
    chat_id: str = ""
    submission_id: str = ""


class EnvelopeInfo(BaseModel):
    """Header of an encrypted patch as reported by the key-release service."""

    id: str
