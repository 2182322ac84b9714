"""
Schemas for the Taskbox document and API payloads

The whole database is one JSON document ``{"users": [...], "tasks": [...]}``.
Records use camelCase keys on disk and on the wire; Python code uses the
snake_case attribute names.
"""
import time
import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    return str(uuid.uuid4())


def now_ms() -> int:
    """Current time as integer epoch milliseconds"""
    return int(time.time() * 1000)


class Record(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class User(Record):
    """
    Users collection schema
    Collection: "users"
    """
    id: str = Field(default_factory=new_id)
    username: str = Field(..., description="Unique, case-sensitive")
    password_hash: str = Field(..., alias="passwordHash", description="BCrypt password hash")
    created_at: int = Field(default_factory=now_ms, alias="createdAt")


class Task(Record):
    """
    Tasks collection schema
    Collection: "tasks"
    """
    id: str = Field(default_factory=new_id)
    user_id: str = Field(..., alias="userId", description="Owner user id")
    title: str = ""
    description: str = ""
    attachment: Optional[str] = Field(None, description="Public URL of the uploaded file")
    attachment_name: Optional[str] = Field(
        None, alias="attachmentName", description="Client-supplied original filename"
    )
    created_at: int = Field(default_factory=now_ms, alias="createdAt")
    updated_at: Optional[int] = Field(None, alias="updatedAt")

    def to_json(self) -> Dict[str, Any]:
        data = self.model_dump(by_alias=True)
        if data["updatedAt"] is None:
            # Never-updated tasks carry no updatedAt key at all
            del data["updatedAt"]
        return data


class Document(BaseModel):
    users: List[User] = []
    tasks: List[Task] = []

    def to_json(self) -> Dict[str, Any]:
        return {
            "users": [u.model_dump(by_alias=True) for u in self.users],
            "tasks": [t.to_json() for t in self.tasks],
        }


# Additional models used for requests/responses (not collections)
class PublicUser(BaseModel):
    id: str
    username: str


class CurrentUser(PublicUser):
    """Authenticated identity resolved from a bearer token"""


class AuthResponse(BaseModel):
    token: str
    user: PublicUser


class CredentialsPayload(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class TaskCreate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None


class TaskUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None

    def changes(self) -> Dict[str, str]:
        """Fields the client actually sent; explicit nulls count as absent"""
        return self.model_dump(exclude_unset=True, exclude_none=True)
