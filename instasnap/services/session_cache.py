"""
Client-side session and cache state.

Single source of truth for what is known about the current user:
- last mobile, group id, tokens, profile and matched photos live in the
  persistent store and survive restarts until logout
- the verified-session marker, per-(mobile, event) photo caches and the
  anonymous selfie live in the process-scoped store

Timestamped entries (photo cache, anonymous selfie) are checked on read only;
an expired entry is deleted by the read that finds it.
"""

import asyncio
import json
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from instasnap.clients.storage_client import KeyValueStore, StorageError, StorageManager
from instasnap.config import settings
from instasnap.models.internal_models import UploadFile, UserSession
from instasnap.utils.image_utils import (
    ImageProcessingError,
    decode_data_url,
    encode_data_url,
)

logger = logging.getLogger(__name__)

PHOTOS_CACHE_TTL_SECONDS = 5 * 60
ANONYMOUS_SELFIE_TTL_SECONDS = 60 * 60

LAST_MOBILE = "last_mobile"
GROUP_ID = "group_id"
AUTH_TOKEN = "auth_token"
REFRESH_TOKEN = "refresh_token"
USER_DATA = "user_data"
MATCHED_PHOTOS = "matched_photos"
USER_SESSION = "user_session"
PHOTOS_CACHE = "photos_cache_"
ANONYMOUS_SELFIE = "anonymous_selfie"

PERSISTENT_KEYS = (LAST_MOBILE, GROUP_ID, AUTH_TOKEN, REFRESH_TOKEN, USER_DATA, MATCHED_PHOTOS)
SESSION_KEYS = (USER_SESSION, ANONYMOUS_SELFIE)

# Removed on logout; anonymous-flow state is left alone
AUTH_PERSISTENT_KEYS = (AUTH_TOKEN, REFRESH_TOKEN, USER_DATA, MATCHED_PHOTOS)
AUTH_SESSION_KEYS = (USER_SESSION,)


class SessionCache:
    """
    Session and cache manager over a StorageManager.

    ``clock`` returns seconds since the epoch; timestamps are persisted in
    milliseconds.
    """

    def __init__(
        self,
        storage: Optional[StorageManager] = None,
        clock: Callable[[], float] = time.time,
        prefix: Optional[str] = None
    ):
        self.storage = storage or StorageManager()
        self.clock = clock
        self.prefix = settings.storage_prefix if prefix is None else prefix

    def _key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def _photos_cache_key(self, mobile: str, event_id: str) -> str:
        return self._key(f"{PHOTOS_CACHE}{mobile}_{event_id}")

    def _now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _load_json(self, store: KeyValueStore, key: str, expected: Optional[type] = None) -> Any:
        """
        Parsed JSON value of a slot.

        Missing or corrupt slots read as None, as do values that parse but
        are not of the ``expected`` type.
        """
        raw = store.get_item(key)
        if raw is None:
            return None
        try:
            value = json.loads(raw)
        except (json.JSONDecodeError, TypeError) as e:
            logger.warning(f"Ignoring corrupt cache entry {key}: {e}")
            return None

        if expected is not None and not isinstance(value, expected):
            logger.warning(f"Ignoring corrupt cache entry {key}: expected {expected.__name__}, got {type(value).__name__}")
            return None
        return value

    def _set(self, store: KeyValueStore, key: str, value: str) -> None:
        """Best-effort write; a store that cannot persist is logged, not raised."""
        try:
            store.set_item(key, value)
        except StorageError as e:
            logger.warning(f"Could not store {key}: {e}")

    def _remove(self, store: KeyValueStore, key: str) -> None:
        try:
            store.remove_item(key)
        except StorageError as e:
            logger.warning(f"Could not remove {key}: {e}")

    def _is_expired(self, timestamp: Any, ttl_seconds: int) -> bool:
        if not isinstance(timestamp, (int, float)):
            return True
        return self._now_ms() - timestamp > ttl_seconds * 1000

    # Last mobile

    def get_last_mobile(self) -> Optional[str]:
        return self.storage.persistent.get_item(self._key(LAST_MOBILE))

    def set_last_mobile(self, mobile: str) -> None:
        self._set(self.storage.persistent, self._key(LAST_MOBILE), mobile)

    def clear_last_mobile(self) -> None:
        self._remove(self.storage.persistent, self._key(LAST_MOBILE))

    # Group id

    def get_group_id(self) -> Optional[str]:
        return self.storage.persistent.get_item(self._key(GROUP_ID))

    def set_group_id(self, group_id: str) -> None:
        self._set(self.storage.persistent, self._key(GROUP_ID), group_id)

    def clear_group_id(self) -> None:
        self._remove(self.storage.persistent, self._key(GROUP_ID))

    # Photos cache

    def get_photos_cache(self, mobile: str, event_id: str) -> Optional[Dict[str, Any]]:
        """
        Cached match results for one mobile number at one event.

        Returns:
            The cached ``{"photos": [...], "groupId": ...}`` dict, or None when
            missing, corrupt, or older than five minutes (expired entries are
            removed)
        """
        key = self._photos_cache_key(mobile, event_id)
        entry = self._load_json(self.storage.session, key, dict)
        if entry is None:
            return None

        if self._is_expired(entry.get("timestamp"), PHOTOS_CACHE_TTL_SECONDS):
            logger.debug(f"Photos cache for {mobile}/{event_id} expired")
            self._remove(self.storage.session, key)
            return None

        data = entry.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("photos", []), list):
            logger.warning(f"Ignoring corrupt cache entry {key}: unexpected photos payload")
            return None
        return data

    def set_photos_cache(self, mobile: str, event_id: str, data: Dict[str, Any]) -> None:
        key = self._photos_cache_key(mobile, event_id)
        self._set(self.storage.session, key, json.dumps({"data": data, "timestamp": self._now_ms()}))

    def clear_photos_cache(self, mobile: str, event_id: str) -> None:
        self._remove(self.storage.session, self._photos_cache_key(mobile, event_id))

    # Verified session

    def get_user_session(self) -> Optional[UserSession]:
        data = self._load_json(self.storage.session, self._key(USER_SESSION), dict)
        if data is None:
            return None
        try:
            return UserSession.from_dict(data)
        except KeyError as e:
            logger.warning(f"Ignoring incomplete user session: missing {e}")
            return None

    def set_user_session(self, mobile: str, event_id: str, is_verified: bool) -> None:
        session = UserSession(mobile=mobile, event_id=event_id, is_verified=is_verified)
        self._set(self.storage.session, self._key(USER_SESSION), json.dumps(session.to_dict()))

    def clear_user_session(self) -> None:
        self._remove(self.storage.session, self._key(USER_SESSION))

    # Authenticated user

    def get_auth_token(self) -> Optional[str]:
        return self.storage.persistent.get_item(self._key(AUTH_TOKEN))

    def set_auth_token(self, token: str) -> None:
        self._set(self.storage.persistent, self._key(AUTH_TOKEN), token)

    def get_refresh_token(self) -> Optional[str]:
        return self.storage.persistent.get_item(self._key(REFRESH_TOKEN))

    def set_refresh_token(self, token: str) -> None:
        self._set(self.storage.persistent, self._key(REFRESH_TOKEN), token)

    def get_user_data(self) -> Optional[Dict[str, Any]]:
        return self._load_json(self.storage.persistent, self._key(USER_DATA), dict)

    def set_user_data(self, user: Dict[str, Any]) -> None:
        self._set(self.storage.persistent, self._key(USER_DATA), json.dumps(user))

    def get_matched_photos(self) -> Optional[List[Dict[str, Any]]]:
        return self._load_json(self.storage.persistent, self._key(MATCHED_PHOTOS), list)

    def set_matched_photos(self, photos: List[Dict[str, Any]]) -> None:
        self._set(self.storage.persistent, self._key(MATCHED_PHOTOS), json.dumps(photos))

    def is_authenticated(self) -> bool:
        """True when both an auth token and user data are stored."""
        return bool(self.get_auth_token()) and self.get_user_data() is not None

    # Anonymous selfie

    async def set_anonymous_selfie(self, file: UploadFile) -> None:
        """
        Keep an anonymous user's selfie for one hour.

        Encoding happens off the event loop; the selfie is readable only once
        this coroutine has completed.
        """
        data_url = await asyncio.to_thread(encode_data_url, file.content, file.content_type)
        record = {
            "dataUrl": data_url,
            "name": file.name,
            "type": file.content_type,
            "size": file.size,
            "timestamp": self._now_ms(),
        }
        self._set(self.storage.session, self._key(ANONYMOUS_SELFIE), json.dumps(record))
        logger.debug(f"Stored anonymous selfie {file.name} ({file.size} bytes)")

    def get_anonymous_selfie(self) -> Optional[UploadFile]:
        """
        The retained selfie as a fresh UploadFile.

        Returns:
            None when nothing is stored, the entry is corrupt, or it is older
            than one hour (expired entries are removed)
        """
        record = self._load_json(self.storage.session, self._key(ANONYMOUS_SELFIE), dict)
        if record is None:
            return None

        if self._is_expired(record.get("timestamp"), ANONYMOUS_SELFIE_TTL_SECONDS):
            logger.debug("Anonymous selfie expired")
            self.clear_anonymous_selfie()
            return None

        try:
            mime, content = decode_data_url(record.get("dataUrl"))
        except ImageProcessingError as e:
            logger.warning(f"Ignoring unreadable anonymous selfie: {e}")
            return None

        return UploadFile(name=record.get("name") or "selfie", content=content, content_type=mime)

    def clear_anonymous_selfie(self) -> None:
        self._remove(self.storage.session, self._key(ANONYMOUS_SELFIE))

    def has_anonymous_selfie(self) -> bool:
        """Presence check only; get_anonymous_selfie() still applies expiry."""
        return bool(self.storage.session.get_item(self._key(ANONYMOUS_SELFIE)))

    # Bulk clearing

    def clear_auth(self) -> None:
        """Forget the logged-in user; last mobile, group id and anonymous state stay."""
        for name in AUTH_PERSISTENT_KEYS:
            self._remove(self.storage.persistent, self._key(name))
        for name in AUTH_SESSION_KEYS:
            self._remove(self.storage.session, self._key(name))
        logger.info("Cleared authenticated session")

    def clear_all(self) -> None:
        """Remove every key this cache owns from both stores."""
        photos_prefix = self._key(PHOTOS_CACHE)
        for store in (self.storage.persistent, self.storage.session):
            for name in PERSISTENT_KEYS + SESSION_KEYS:
                self._remove(store, self._key(name))
            for key in store.keys():
                if key.startswith(photos_prefix):
                    self._remove(store, key)
        logger.info("Cleared all cached session data")


# Global cache instance
_session_cache: Optional[SessionCache] = None


def get_session_cache() -> SessionCache:
    """
    Get the global session cache instance.

    Returns:
        SessionCache: The global session cache instance
    """
    global _session_cache
    if _session_cache is None:
        _session_cache = SessionCache()
    return _session_cache
