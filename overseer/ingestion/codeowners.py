"""CODEOWNERS parsing.

A rule line is ``<pattern> <owner> [<owner> ...]``. Owners are either users
(``@alice`` or ``alice@example.com``) or teams (``@org/team``). Parsing never
fails: anything that is not a comment or blank becomes a rule.
"""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from typing import Iterable, Optional

from overseer.ingestion.errors import DecodeError

# Locations GitHub itself honours, in the order it looks at them.
CODEOWNERS_PATHS = ("CODEOWNERS", ".github/CODEOWNERS", "docs/CODEOWNERS")


@dataclass(frozen=True)
class OwnerRef:
    kind: str  # "user" or "team"
    name: str  # login, or team slug
    token: str
    org: Optional[str] = None

    @property
    def is_team(self) -> bool:
        return self.kind == "team"

    @property
    def is_valid(self) -> bool:
        """False for tokens like ``@`` or ``@org/`` that name nobody."""
        if self.is_team:
            return bool(self.org and self.name)
        return bool(self.name)


@dataclass(frozen=True)
class Rule:
    pattern: str
    owners: list[str] = field(default_factory=list)
    line: int = 0

    def owner_refs(self) -> list[OwnerRef]:
        return [classify_owner(o) for o in self.owners]


def classify_owner(token: str) -> OwnerRef:
    """Split an owner token into a team or user reference."""
    if token.startswith("@") and "/" in token:
        org, slug = token[1:].split("/", 1)
        return OwnerRef(kind="team", name=slug, token=token, org=org)
    return OwnerRef(kind="user", name=token.lstrip("@"), token=token)


def parse(text: Optional[str]) -> list[Rule]:
    """Parse CODEOWNERS text into rules.

    ``line`` is the 1-based position among the non-blank, non-comment lines.
    """
    if not text:
        return []

    lines = [ln.strip() for ln in text.splitlines()]
    lines = [ln for ln in lines if ln and not ln.startswith("#")]

    rules: list[Rule] = []
    for idx, ln in enumerate(lines):
        tokens = ln.split()
        if len(tokens) < 2:
            rules.append(Rule(pattern=ln, owners=[], line=idx + 1))
            continue
        rules.append(Rule(pattern=tokens[0], owners=tokens[1:], line=idx + 1))
    return rules


def unique_owners(rules: Iterable[Rule]) -> list[str]:
    """Distinct owner tokens across ``rules``, first-seen order."""
    seen: dict[str, None] = {}
    for rule in rules:
        for owner in rule.owners:
            seen.setdefault(owner, None)
    return list(seen)


def decode_content(content: str) -> str:
    """Decode a base64 ``content`` field from the GitHub contents API."""
    try:
        raw = base64.b64decode("".join(content.split()))
        return raw.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError, AttributeError, TypeError) as exc:
        raise DecodeError(f"Cannot decode CODEOWNERS content: {exc}") from exc
