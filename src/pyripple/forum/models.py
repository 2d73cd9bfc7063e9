"""Forum records.

Every record inherits from :class:`RecordModel`, which maps the store's
camelCase keys onto snake_case fields and ignores unknown keys.  Records
are tolerant of missing fields: the web client wrote them ad hoc, so a
field may be absent, ``null`` or a server-timestamp placeholder.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pyripple._constants import FORBIDDEN_KEY_CHARS, SUPPORTED_LANGUAGES


def _epoch_ms(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


def _as_list(value: Any) -> list[Any]:
    """Stored arrays may come back as lists or integer-keyed objects."""
    if value is None:
        return []
    if isinstance(value, dict):
        return [value[k] for k in sorted(value, key=lambda k: int(k) if str(k).isdigit() else str(k))]
    if isinstance(value, list):
        return value
    return [value]


def normalize_tags(value: Any) -> list[str]:
    """Split/trim/lowercase tags; characters invalid in keys become ``-``."""
    raw = value.split(",") if isinstance(value, str) else _as_list(value)
    tags: list[str] = []
    for item in raw:
        tag = str(item).strip().lower()
        tag = "".join("-" if ch in FORBIDDEN_KEY_CHARS or ch == "/" else ch for ch in tag)
        if tag and tag not in tags:
            tags.append(tag)
    return tags


class RecordModel(BaseModel):
    """Base for records read from or written to the store."""

    model_config = ConfigDict(
        frozen=True,
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    def to_store(self) -> dict[str, Any]:
        """camelCase payload without unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Group(RecordModel):
    id: str = ""
    name: str = ""
    description: str = ""
    admin_uid: str | None = None
    code: str | None = None
    discoverable: bool = False
    is_public: bool = False
    todays_question_id: str | None = None
    invite_token: str | None = None
    created_at: int = 0

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, value: Any) -> int:
        return _epoch_ms(value)


class Solution(RecordModel):
    id: str = ""
    group_id: str = ""
    code: str = ""
    language: str = ""
    approach: str = ""
    tc: str = ""
    """Time complexity (LaTeX)."""
    sc: str = ""
    """Space complexity (LaTeX)."""
    problem_link: str | None = None
    created_by: str = ""
    author_name: str = "Anonymous"
    created_at: int = 0
    upvotes_count: int = 0
    tags: list[str] = Field(default_factory=list)
    todays_question_id: str | None = None

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, value: Any) -> int:
        return _epoch_ms(value)

    @field_validator("upvotes_count", mode="before")
    @classmethod
    def _coerce_upvotes(cls, value: Any) -> int:
        return max(0, _epoch_ms(value))

    @field_validator("author_name", mode="before")
    @classmethod
    def _default_author(cls, value: Any) -> str:
        return str(value) if value else "Anonymous"

    @field_validator("tags", mode="before")
    @classmethod
    def _coerce_tags(cls, value: Any) -> list[str]:
        return [str(tag) for tag in _as_list(value)]


class SolutionDraft(BaseModel):
    """User input for a new solution; validated before anything is written."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    code: str
    language: str
    approach: str
    tc: str
    sc: str
    problem_link: str | None = None
    tags: list[str] = Field(default_factory=list)
    todays_question_id: str | None = None

    @field_validator("code", "approach", "tc", "sc")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value

    @field_validator("language")
    @classmethod
    def _supported_language(cls, value: str) -> str:
        language = value.strip().lower()
        if language not in SUPPORTED_LANGUAGES:
            raise ValueError(f"unsupported language {value!r}")
        return language

    @field_validator("problem_link")
    @classmethod
    def _empty_link_is_none(cls, value: str | None) -> str | None:
        return value or None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, value: Any) -> list[str]:
        return normalize_tags(value)


class Comment(RecordModel):
    id: str = ""
    author: str = ""
    author_uid: str = ""
    content: str = ""
    created_at: int = 0
    parent_id: str | None = None
    line_number: int | None = None
    upvotes: int = 0

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, value: Any) -> int:
        return _epoch_ms(value)

    @field_validator("upvotes", mode="before")
    @classmethod
    def _coerce_upvotes(cls, value: Any) -> int:
        return _epoch_ms(value)

    @field_validator("line_number", mode="before")
    @classmethod
    def _zero_line_is_none(cls, value: Any) -> int | None:
        return value or None


class InlineComment(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    text: str
    author: str


class CommentsSnapshot(BaseModel):
    """Comments oldest first plus the ones anchored to a code line."""

    model_config = ConfigDict(frozen=True)

    comments: list[Comment] = Field(default_factory=list)
    inline: dict[int, list[InlineComment]] = Field(default_factory=dict)


class Notification(RecordModel):
    id: str = ""
    type: str = ""
    group_id: str = ""
    from_uid: str = ""
    created_at: int = 0
    status: str = ""

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, value: Any) -> int:
        return _epoch_ms(value)

    @property
    def is_pending_join_request(self) -> bool:
        return self.type == "join_request" and self.status == "pending"


class JoinRequest(RecordModel):
    id: str = ""
    uid: str
    created_at: int = 0
    status: str = "pending"

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_created_at(cls, value: Any) -> int:
        return _epoch_ms(value)


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    uid: str
    name: str
    score: int
