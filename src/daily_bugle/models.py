"""Data models for sections, generated articles and the news index."""

from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field

SECTION_ID_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9_-]*$"


class Section(BaseModel):
    """One configured content slot with its own prompts and identity."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    id: str = Field(
        ...,
        pattern=SECTION_ID_PATTERN,
        description="Slug used as a directory name under sections/.",
    )
    name: str
    reporter: str
    system_prompt: str = Field(..., alias="systemPrompt")
    section_prompt: str = Field(..., alias="sectionPrompt")


class GenerationResult(BaseModel):
    """Generated text for one section, tagged with the section identity."""

    id: str
    name: str
    reporter: str
    content: str
    timestamp: datetime


class NewsIndexEntry(BaseModel):
    id: str
    name: str
    reporter: str
    url: str
    timestamp: datetime


class NewsIndex(BaseModel):
    """Manifest listing the latest article per section."""

    items: List[NewsIndexEntry]
    generated: datetime
