"""Profile payload and change-detection equality."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Literal

SecretFlag = Literal["none", "agent-owned", "not-saved", "not-required"]

SECRET_FLAGS: frozenset[str] = frozenset({"none", "agent-owned", "not-saved", "not-required"})

# Secrets with these flags are owned elsewhere and never stored in a file.
_UNSTORED_FLAGS = frozenset({"agent-owned", "not-saved"})


@dataclass(frozen=True)
class Secret:
    value: str = ""
    flags: SecretFlag = "none"


@dataclass(frozen=True)
class Profile:
    """One connection-like profile. Immutable; replace instead of mutating."""

    id: str
    name: str
    type: str = "generic"
    settings: dict[str, Any] = field(default_factory=dict)
    secrets: dict[str, Secret] = field(default_factory=dict)
    body: str = ""

    def stored_secrets(self) -> dict[str, Secret]:
        """Secrets that are expected to round-trip through a file."""
        return {k: s for k, s in self.secrets.items() if s.flags not in _UNSTORED_FLAGS}

    def same_as(self, other: Profile | None) -> bool:
        """Compare ignoring agent-owned and not-saved secrets."""
        if other is None:
            return False
        return (
            self.id == other.id
            and self.name == other.name
            and self.type == other.type
            and self.settings == other.settings
            and self.body.strip() == other.body.strip()
            and self.stored_secrets() == other.stored_secrets()
        )

    def with_changes(self, **changes: Any) -> Profile:
        return replace(self, **changes)


def is_valid_id(value: object) -> bool:
    if not isinstance(value, str):
        return False
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


def new_id() -> str:
    return str(uuid.uuid4())
