"""
Pydantic schemas for editorials.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class EditorialCreate(BaseModel):
    title: str = Field(..., max_length=255)
    content: str = Field("", max_length=100_000)

    @field_validator("title")
    @classmethod
    def title_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @field_validator("content")
    @classmethod
    def strip_content(cls, v: str) -> str:
        return v.strip()


class EditorialUpdate(BaseModel):
    """Omitted or blank fields keep their current value."""
    title: Optional[str] = Field(None, max_length=255)
    content: Optional[str] = Field(None, max_length=100_000)


class EditorialAuthor(BaseModel):
    email: str

    model_config = ConfigDict(from_attributes=True)


class EditorialResponse(BaseModel):
    id: str
    title: str
    content: str
    author_id: str
    created_at: datetime
    author: Optional[EditorialAuthor] = None

    model_config = ConfigDict(from_attributes=True)
