from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

class Role(str, Enum):
    USER = 'user'
    ASSISTANT = 'assistant'
    SYSTEM = 'system'

class TurnType(str, Enum):
    TEXT = 'text'
    AUDIO = 'audio'
    IMAGE = 'image'

class Account(BaseModel):
    """Credit state for one phone number."""
    model_config = ConfigDict(frozen=True)

    phone: str
    balance: int = Field(ge=0)
    usage_count: int = Field(default=0, ge=0)
    is_active: bool = True
    last_activity: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @property
    def credit_status(self) -> str:
        if self.balance <= 0:
            return 'exhausted'
        if self.balance <= 2:
            return 'low'
        if self.balance <= 10:
            return 'warning'
        return 'good'

class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    phone: str
    role: Role
    content: str = Field(min_length=1)
    turn_type: TurnType = TurnType.TEXT
    metadata: Dict[str, Any] = Field(default_factory=dict)
    sequence: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    def as_context(self) -> Dict[str, str]:
        return {'role': self.role.value, 'content': self.content}

class Continuation(BaseModel):
    """Remainder of a reply that did not fit in one outbound segment."""
    model_config = ConfigDict(frozen=True)

    id: str
    phone: str
    content: str = Field(min_length=1)
    origin_turn_id: Optional[str] = None
    sequence_index: int = Field(ge=1)
    total_parts: int = Field(ge=1)
    expires_at: datetime
    created_at: datetime = Field(default_factory=utcnow)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

PHONE_PATTERN = r'^\+?[\d\s\-\(\)]+$'

class InboundMessage(BaseModel):
    """Fields of a Twilio messaging webhook the pipeline consumes."""
    model_config = ConfigDict(frozen=True, populate_by_name=True, str_strip_whitespace=True)

    from_number: str = Field(alias='From', pattern=PHONE_PATTERN)
    body: Optional[str] = Field(default=None, alias='Body')
    media_url: Optional[str] = Field(default=None, alias='MediaUrl0')
    media_content_type: Optional[str] = Field(default=None, alias='MediaContentType0')

    @field_validator('body', 'media_url', 'media_content_type', mode='after')
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @field_validator('media_url', mode='after')
    @classmethod
    def _check_media_url(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        parsed = urlparse(value)
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValueError('Invalid media URL format')
        return value

    @model_validator(mode='after')
    def _require_content(self) -> 'InboundMessage':
        if not self.body and not self.media_url:
            raise ValueError('Request must contain either text or audio content')
        return self
