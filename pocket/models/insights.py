"""
Models for learned knowledge about a user's spending: detected patterns,
merchant aliases, and assistant conversations.
"""

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from pocket.models.common import utc_now
from pocket.models.expense import ExpenseCategory


class PatternType(str, Enum):
    """Kinds of spending pattern the detector emits."""
    SPENDING_HABIT = "spending_habit"
    FAVORITE_PLACE = "favorite_place"
    TIME_PATTERN = "time_pattern"
    PAYMENT_CYCLE = "payment_cycle"
    CATEGORY_TREND = "category_trend"
    ANOMALY_THRESHOLD = "anomaly_threshold"


class SpendingPattern(BaseModel):
    """
    A detected spending pattern.

    Patterns are unique per (user_id, pattern_type, pattern_key); a new
    detection replaces the stored one.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    pattern_type: PatternType
    pattern_key: str = Field(..., min_length=1)
    pattern_value: dict[str, Any] = Field(default_factory=dict)
    confidence: float = Field(..., ge=0.0, le=1.0)
    occurrences: int = Field(default=0, ge=0)
    category: Optional[ExpenseCategory] = None
    analysis_period_start: Optional[date] = None
    analysis_period_end: Optional[date] = None
    is_active: bool = True
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.user_id, self.pattern_type.value, self.pattern_key)


class PatternDetectionResult(BaseModel):
    """Summary returned by a pattern detection run."""

    user_id: str
    patterns: list[SpendingPattern] = Field(default_factory=list)
    expenses_analyzed: int = 0
    message: Optional[str] = None

    @property
    def patterns_detected(self) -> int:
        return len(self.patterns)


class MerchantAlias(BaseModel):
    """A merchant the user has already categorized once."""

    user_id: str
    key: str = Field(..., description="merchant_alias_<normalized name>")
    raw_name: str
    establishment_name: str
    category: ExpenseCategory
    subcategory: Optional[str] = None
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    last_used_at: Optional[datetime] = None


class ChatRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatMessage(BaseModel):
    role: ChatRole
    content: str
    timestamp: datetime = Field(default_factory=utc_now)


class Conversation(BaseModel):
    """An assistant conversation with its full message history."""

    id: UUID = Field(default_factory=uuid4)
    user_id: str
    title: str = "Nova conversa"
    messages: list[ChatMessage] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def add_message(self, role: ChatRole, content: str) -> ChatMessage:
        """Append a message; the first user message becomes the title."""
        message = ChatMessage(role=role, content=content)
        if role == ChatRole.USER and not any(
            m.role == ChatRole.USER for m in self.messages
        ):
            title = content.strip()
            self.title = title[:50] + ("..." if len(title) > 50 else "")
        self.messages.append(message)
        self.updated_at = message.timestamp
        return message
