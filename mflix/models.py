from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bson import ObjectId


def bson_datetime(value):
    """Return `value` the way MongoDB hands it back: UTC, millisecond precision."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    return value.replace(microsecond=value.microsecond // 1000 * 1000)


@dataclass
class User:
    email: str
    name: str = ""
    password: Optional[str] = None
    preferences: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    @classmethod
    def from_document(cls, doc):
        return cls(
            email=doc["email"],
            name=doc.get("name", ""),
            password=doc.get("password"),
            preferences=doc.get("preferences") or {},
            id=str(doc["_id"]) if doc.get("_id") is not None else None,
        )

    def to_document(self):
        doc = {
            "email": self.email,
            "name": self.name,
            "preferences": dict(self.preferences),
        }
        if self.password is not None:
            doc["password"] = self.password
        if self.id:
            doc["_id"] = ObjectId(self.id)
        return doc


@dataclass
class Session:
    # sessions are keyed by the user's email
    user_id: str
    jwt: str

    @classmethod
    def from_document(cls, doc):
        return cls(user_id=doc["user_id"], jwt=doc.get("jwt", ""))


@dataclass
class Comment:
    id: Optional[str]
    email: str
    text: str
    name: str = ""
    movie_id: Optional[str] = None
    date: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc):
        movie_id = doc.get("movie_id")
        return cls(
            id=str(doc["_id"]),
            email=doc["email"],
            text=doc.get("text", ""),
            name=doc.get("name", ""),
            movie_id=str(movie_id) if movie_id is not None else None,
            date=doc.get("date"),
        )

    def to_document(self):
        doc = {
            "_id": ObjectId(self.id),
            "email": self.email,
            "name": self.name,
            "text": self.text,
            "date": bson_datetime(self.date),
        }
        if self.movie_id is not None:
            doc["movie_id"] = ObjectId(self.movie_id) if ObjectId.is_valid(self.movie_id) else self.movie_id
        return doc


@dataclass(frozen=True)
class Critic:
    """One row of the most-active-commenters report."""

    email: str
    count: int

    @classmethod
    def from_document(cls, doc):
        return cls(email=doc["_id"], count=int(doc["count"]))
