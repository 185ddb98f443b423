"""The authenticated caller of an engine operation."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """Identity and role re-derived from a server-validated session."""

    user_id: str
    role: str
