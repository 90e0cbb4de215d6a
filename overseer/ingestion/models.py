"""Typed records built from GitHub API payloads."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from overseer.ingestion.codeowners import Rule


def synthetic_user_id(login: str) -> int:
    """Stable numeric id for users we only know by login (31-based hash)."""
    h = 0
    for ch in login:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFFFFFFFFFF
    if h >= 1 << 63:
        h -= 1 << 64
    return abs(h)


@dataclass(frozen=True)
class Organization:
    login: str
    github_id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    email: Optional[str] = None
    url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Organization":
        return cls(
            login=data["login"],
            github_id=data.get("id"),
            name=data.get("name"),
            description=data.get("description"),
            email=data.get("email"),
            url=data.get("html_url"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
        )


@dataclass(frozen=True)
class Repository:
    name: str
    full_name: str
    organization: str
    github_id: Optional[int] = None
    description: Optional[str] = None
    private: bool = False
    url: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    topics: list[str] = field(default_factory=list)

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @classmethod
    def from_api(cls, data: dict[str, Any], organization: str) -> "Repository":
        return cls(
            name=data["name"],
            full_name=data["full_name"],
            organization=organization,
            github_id=data.get("id"),
            description=data.get("description"),
            private=bool(data.get("private", False)),
            url=data.get("html_url"),
            created_at=data.get("created_at"),
            updated_at=data.get("updated_at"),
            topics=list(data.get("topics") or []),
        )


@dataclass(frozen=True)
class Team:
    slug: str
    organization: str
    name: Optional[str] = None
    github_id: Optional[int] = None
    description: Optional[str] = None
    url: Optional[str] = None

    @property
    def full_slug(self) -> str:
        return f"{self.organization}/{self.slug}"

    @classmethod
    def from_api(cls, data: dict[str, Any], organization: str) -> "Team":
        return cls(
            slug=data["slug"],
            organization=organization,
            name=data.get("name"),
            github_id=data.get("id"),
            description=data.get("description"),
            url=data.get("html_url"),
        )


@dataclass(frozen=True)
class Topic:
    name: str
    count: int = 0


@dataclass(frozen=True)
class User:
    login: str
    name: Optional[str] = None
    email: Optional[str] = None
    url: Optional[str] = None
    github_id: Optional[int] = None

    @classmethod
    def synthesize(cls, login: str, web_url: str = "https://github.com") -> "User":
        """A user seen only as a CODEOWNERS entry."""
        return cls(
            login=login,
            name=login,
            email=None,
            url=f"{web_url.rstrip('/')}/{login}",
            github_id=synthetic_user_id(login),
        )


@dataclass(frozen=True)
class OwnershipFile:
    repository: str
    found: bool = False
    path: Optional[str] = None
    rules: list[Rule] = field(default_factory=list)
