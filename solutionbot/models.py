"""
Data Models
===========
Pydantic models shared by the lookup, cache and schedule paths.
All models serialize to JSON so transports can ship them as-is.
"""

from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator


# ─── Enums ────────────────────────────────────────────────────────────────────


class LookupStatus(str, Enum):
    """Outcome of a problem lookup that did not raise."""
    FOUND = "found"
    NO_MATCH = "no_match"


class DocumentStatus(str, Enum):
    """Per-document outcome of a cache build."""
    BUILT = "built"
    MISSING = "missing"
    EMPTY = "empty"
    FAILED = "failed"


class ScheduleKind(str, Enum):
    """Kinds of schedule items."""
    TEST = "test"
    QUIZ = "quiz"

    @property
    def label(self) -> str:
        return self.value.title()


# ─── Problem Tokens ───────────────────────────────────────────────────────────


class ProblemToken(BaseModel):
    """
    Canonical chapter/problem identifier.
    ``key`` is the storage form ("5-10"), ``display`` the reply form ("5–10").
    """
    model_config = ConfigDict(frozen=True)

    chapter: str = Field(pattern=r"^[0-9]+$")
    problem: str = Field(pattern=r"^[0-9]+$")

    @computed_field
    @property
    def key(self) -> str:
        return f"{self.chapter}-{self.problem}"

    @computed_field
    @property
    def display(self) -> str:
        return f"{self.chapter}–{self.problem}"

    def __str__(self) -> str:
        return self.key


# ─── Lookup / Render Results ──────────────────────────────────────────────────


class RenderedPage(BaseModel):
    """A JPEG artifact produced from one PDF page."""
    path: str
    page_number: int = Field(ge=1)
    width: int = Field(ge=1)
    height: int = Field(ge=1)


class LookupResult(BaseModel):
    """Result of resolving a raw problem string to a page image."""
    status: LookupStatus
    token: ProblemToken
    source_name: str
    pdf_path: str
    page_number: Optional[int] = None
    artifact_path: Optional[str] = None
    from_cache: bool = False

    @property
    def found(self) -> bool:
        return self.status == LookupStatus.FOUND


class RenderFailure(BaseModel):
    """A single token that failed to render during a cache build."""
    problem: str
    page_number: int
    message: str


class DocumentReport(BaseModel):
    """Per-document counts from a cache build."""
    source: str
    pdf_path: str
    status: DocumentStatus
    rendered: int = 0
    skipped: int = 0
    total: int = 0
    failures: list[RenderFailure] = Field(default_factory=list)
    error: Optional[str] = None


# ─── Schedule ─────────────────────────────────────────────────────────────────


class ScheduleItem(BaseModel):
    """
    One dated test or quiz.
    Property names are matched case-insensitively on load so files written
    with "Id"/"Title" style keys still read back.
    """
    id: str = Field(pattern=r"^[0-9a-fA-F]{8}$")
    kind: ScheduleKind = ScheduleKind.TEST
    title: str
    date: dt.date
    description: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _lowercase_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {str(k).lower(): v for k, v in data.items()}
        return data

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be empty")
        return value

    @field_validator("description")
    @classmethod
    def _blank_description_is_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return None
        return value.strip()


class NavControl(BaseModel):
    """A pagination button; ``custom_id`` carries the whole cursor."""
    label: str
    custom_id: str
    disabled: bool = False


class ScheduleEntry(BaseModel):
    """A rendered row of the schedule view."""
    index: int = Field(ge=1)
    name: str
    value: str
    item_id: str


class SchedulePage(BaseModel):
    """One page of the schedule, ready for a transport to draw."""
    title: str
    description: str
    footer: Optional[str] = None
    page_index: int = 0
    total_pages: int = 0
    total_items: int = 0
    entries: list[ScheduleEntry] = Field(default_factory=list)
    controls: list[NavControl] = Field(default_factory=list)


# ─── Command Replies ──────────────────────────────────────────────────────────


class CommandReply(BaseModel):
    """
    What a command handler wants sent back to the channel.
    ``delete_after_send`` marks temporary artifacts the transport should
    remove once uploaded.
    """
    content: str = ""
    ephemeral: bool = False
    attachment_path: Optional[str] = None
    attachment_name: Optional[str] = None
    delete_after_send: bool = False
    schedule: Optional[SchedulePage] = None
