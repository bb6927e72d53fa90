from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

AI_SENDER_ID = "ai"
AI_SENDER_LABEL = "AI Assistant"


# Relay messages
class Sender(BaseModel):
    id: str = Field(alias="_id")
    email: str

    model_config = {"populate_by_name": True}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def ai_sender() -> Sender:
    return Sender(_id=AI_SENDER_ID, email=AI_SENDER_LABEL)


class BaseMessage(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    message: str
    sender: Sender
    timestamp: str = Field(default_factory=_now_iso)
    expiresAt: Optional[float] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ChatMessage(BaseMessage):
    kind: Literal["chat"] = "chat"


class AIInterimMessage(BaseMessage):
    kind: Literal["ai-interim"] = "ai-interim"
    sender: Sender = Field(default_factory=ai_sender)


class AIResultMessage(BaseMessage):
    kind: Literal["ai-result"] = "ai-result"
    sender: Sender = Field(default_factory=ai_sender)
    fileTree: Optional[Dict[str, Any]] = None


class ErrorMessage(BaseMessage):
    kind: Literal["error"] = "error"
    sender: Sender = Field(default_factory=ai_sender)


RelayMessage = Union[ChatMessage, AIInterimMessage, AIResultMessage, ErrorMessage]


# Request bodies
class AIMessage(BaseModel):
    role: str
    content: str

    @field_validator("role")
    @classmethod
    def normalize_role(cls, value: str) -> str:
        return value.strip().lower()


class ChatRequest(BaseModel):
    messages: List[AIMessage]


class TemplateRequest(BaseModel):
    prompt: str

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("prompt must not be empty")
        return value


class UserCredentials(BaseModel):
    email: str
    password: str

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        email = value.strip().lower()
        if "@" not in email or len(email) < 6:
            raise ValueError("email must be a valid email address")
        return email

    @field_validator("password")
    @classmethod
    def password_length(cls, value: str) -> str:
        if len(value) < 3:
            raise ValueError("password must be at least 3 characters long")
        return value


class ProjectCreate(BaseModel):
    name: str

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        name = value.strip().lower()
        if not name:
            raise ValueError("name is required")
        return name


class AddUsersRequest(BaseModel):
    projectId: str
    users: List[str]

    @field_validator("users")
    @classmethod
    def users_not_empty(cls, value: List[str]) -> List[str]:
        if not value:
            raise ValueError("users must be a non-empty list")
        return value


class FileTreeUpdate(BaseModel):
    projectId: str
    fileTree: Dict[str, Any]
