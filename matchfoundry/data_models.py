# pydantic models for the MatchFoundry records
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

import shortuuid
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .config import CATEGORY_OPTIONS

Category = Literal[
    "product",
    "sales",
    "fundraising",
    "branding",
    "ux",
    "marketing",
    "tech",
    "ops",
    "other",
]

UserRole = Literal["founder", "expert", "admin"]
ChatStatus = Literal["proposed", "scheduled"]
SlotStatus = Literal["pending", "selected", "expired"]
SuggestionStatus = Literal["suggested"]


def new_id() -> str:
    """Generate a short UUID for record identification."""
    return shortuuid.uuid()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def coerce_category(value: Any) -> str:
    """Map free-form category text onto the closed enumeration; unknown -> 'other'."""
    if value is None:
        return "other"
    s = str(value).strip().lower()
    return s if s in CATEGORY_OPTIONS else "other"


class Record(BaseModel):
    """Base for records exchanged with callers.

    Fields are snake_case in Python and camelCase on the wire
    (`model_dump(by_alias=True)`); both spellings are accepted on input.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class User(Record):
    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    email: str
    role: UserRole = "founder"


class ExtractedItem(Record):
    """One need or learning as produced by the extraction service."""

    label: str = Field(..., description="Short description of the need or learning")
    category: Category = Field(default="other", description="One of the fixed categories")

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, v: Any) -> str:
        return coerce_category(v)


class ExtractionResult(Record):
    """Structured output of the extraction service. Each list holds at most 3 items."""

    needs: List[ExtractedItem] = Field(default_factory=list)
    learnings: List[ExtractedItem] = Field(default_factory=list)


class ProfileItem(Record):
    """Shared shape of Need and Learning.

    `generation` is the check-in generation the item was created in; the item is
    active while it matches the owner's current generation. `is_active` is filled
    in by the store when the item is read.
    """

    id: str = Field(default_factory=new_id)
    user_id: str
    label: str
    category: Category = "other"
    generation: int = 1
    is_active: bool = True

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, v: Any) -> str:
        return coerce_category(v)


class Need(ProfileItem):
    """Something a founder wants help with."""


class Learning(ProfileItem):
    """Something a founder can offer to others."""


class MatchSuggestion(Record):
    """Scored pairing of a need with a candidate expert.

    Fields:
        need_id: The need being served.
        expert_user_id: Owner of the matching learning.
        score: Token overlap plus category bonus, in [0, 1].
        reason: Human-readable justification shown to users.
        status: Lifecycle marker; fresh suggestions are 'suggested'.
    """

    id: str = Field(default_factory=new_id)
    need_id: str
    expert_user_id: str
    score: float = Field(default=0.0, ge=0.0, le=1.0)
    reason: str
    status: SuggestionStatus = "suggested"


class SlotInput(Record):
    """A candidate meeting time as proposed by the expert (ISO-8601 timestamps)."""

    start_time: datetime
    end_time: datetime

    @model_validator(mode="after")
    def _check_order(self) -> "SlotInput":
        if self.end_time <= self.start_time:
            raise ValueError("endTime must be after startTime")
        return self


class ProposedSlot(Record):
    id: str = Field(default_factory=new_id)
    coffee_chat_id: str
    start_time: datetime
    end_time: datetime
    status: SlotStatus = "pending"


class CoffeeChat(Record):
    """Scheduling negotiation between a requester and an expert for one need.

    `proposed_slots` is attached by the store when the chat is read.
    """

    id: str = Field(default_factory=new_id)
    need_id: str
    requester_id: str
    expert_id: str
    status: ChatStatus = "proposed"
    chosen_slot_id: Optional[str] = None
    meeting_link: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    proposed_slots: List[ProposedSlot] = Field(default_factory=list)


class LLMExtractedItem(BaseModel):
    """Item shape requested from the LLM (strict schema: no defaults)."""

    label: str
    category: Category


class LLMExtraction(BaseModel):
    """Structured output requested from the LLM for extraction."""

    needs: List[LLMExtractedItem]
    learnings: List[LLMExtractedItem]
