"""Session cache and page-flow controllers."""

from instasnap.services.anonymous_flow import AnonymousFlow, AnonymousState, AnonymousStep
from instasnap.services.gallery_service import (
    AccessOptions,
    EventPhotosFeed,
    HighlightsFeed,
    PersonPhotos,
    WallOfFameFeed,
    load_access_options,
    resolve_access,
)
from instasnap.services.registered_flow import RegisteredFlow, RegisteredState, RegisteredStep
from instasnap.services.session_cache import SessionCache, get_session_cache

__all__ = [
    "AnonymousFlow",
    "AnonymousState",
    "AnonymousStep",
    "AccessOptions",
    "EventPhotosFeed",
    "HighlightsFeed",
    "PersonPhotos",
    "WallOfFameFeed",
    "load_access_options",
    "resolve_access",
    "RegisteredFlow",
    "RegisteredState",
    "RegisteredStep",
    "SessionCache",
    "get_session_cache",
]
