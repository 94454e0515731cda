from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

DEFAULT_DISPLAY_NAME = "Anonymous"


@dataclass(frozen=True)
class UserProfile:
    """Display data mirrored from the identity provider. Not a source of truth."""

    user_id: str
    display_name: str = DEFAULT_DISPLAY_NAME
    photo_url: Optional[str] = None
