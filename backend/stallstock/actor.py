from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """Authenticated identity performing an operation, supplied by the auth layer."""
    user_id: str
    name: str | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.user_id
