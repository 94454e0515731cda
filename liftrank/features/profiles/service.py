from __future__ import annotations

import threading
from typing import Dict, Optional

from liftrank.models.profile import DEFAULT_DISPLAY_NAME, UserProfile


class ProfileDirectory:
    """In-memory mirror of display names and photos, fed from verified auth claims."""

    def __init__(self):
        self._profiles: Dict[str, UserProfile] = {}
        self._lock = threading.Lock()

    def upsert(
        self,
        user_id: str,
        *,
        display_name: Optional[str] = None,
        photo_url: Optional[str] = None,
    ) -> UserProfile:
        with self._lock:
            current = self._profiles.get(user_id) or UserProfile(user_id=user_id)
            profile = UserProfile(
                user_id=user_id,
                display_name=(display_name or "").strip() or current.display_name,
                photo_url=photo_url or current.photo_url,
            )
            self._profiles[user_id] = profile
            return profile

    def get(self, user_id: str) -> UserProfile:
        with self._lock:
            return self._profiles.get(user_id) or UserProfile(user_id=user_id, display_name=DEFAULT_DISPLAY_NAME)

    def snapshot(self) -> Dict[str, UserProfile]:
        with self._lock:
            return dict(self._profiles)

    def clear(self) -> None:
        with self._lock:
            self._profiles.clear()


# Singleton directory used by auth and the ranking service
profile_directory = ProfileDirectory()
