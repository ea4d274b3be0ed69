"""
Gallery browsing: event access options, highlight feeds, all-photos feed
with person filtering, and single-person galleries.

Feeds stay empty when no event is configured; fetch failures are logged
and leave the feed as it was.
"""

from dataclasses import dataclass
from typing import List, Optional

import structlog

from instasnap.clients.instasnap_client import InstaSnapAPIError, InstaSnapClient
from instasnap.models.api_models import EventPhoto, EventPhotosResponse, Person, PhotoPermission

logger = structlog.get_logger()

EVENT_PHOTOS_PAGE_SIZE = 30


@dataclass
class AccessOptions:
    """Which journeys the event's photo permission makes reachable."""

    show_anonymous_match: bool
    show_registration: bool
    show_event_highlights: bool


def resolve_access(permission: Optional[PhotoPermission]) -> AccessOptions:
    access = permission.photoViewAccess if permission is not None else None
    return AccessOptions(
        show_anonymous_match=access not in ("Everyone", "Attendees"),
        show_registration=access != "Public",
        show_event_highlights=permission is not None and permission.enableEventHighlights,
    )


async def load_access_options(api: InstaSnapClient, event_id: Optional[str]) -> Optional[AccessOptions]:
    """
    Fetch the event's photo permission once and resolve it.

    Returns:
        None when no event is configured; defaults when the fetch fails
    """
    if not event_id:
        return None

    permission = None
    try:
        response = await api.get_photo_permission(event_id)
        if response.success and response.response:
            permission = response.response[0]
    except InstaSnapAPIError as e:
        logger.warning("Failed to fetch photo permissions", event_id=event_id, error=str(e))

    return resolve_access(permission)


class SkipLimitFeed:
    """Photo feed paginated by offset; a short page means the end was reached."""

    def __init__(self, api: InstaSnapClient, event_id: Optional[str], limit: int = 50):
        self.api = api
        self.event_id = event_id
        self.limit = limit
        self.photos: List[EventPhoto] = []
        self.skip = 0
        self.has_more = bool(event_id)
        self.loading = False

    async def _fetch(self) -> EventPhotosResponse:
        raise NotImplementedError

    async def load_more(self) -> List[EventPhoto]:
        """Fetch the next page and append it; returns the new photos."""
        if not self.event_id or not self.has_more or self.loading:
            return []

        self.loading = True
        try:
            response = await self._fetch()
        except InstaSnapAPIError as e:
            logger.warning("Failed to fetch photos", feed=type(self).__name__, skip=self.skip, error=str(e))
            return []
        finally:
            self.loading = False

        if not response.success:
            self.has_more = False
            return []

        batch = response.response
        self.photos.extend(batch)
        self.skip += len(batch)
        self.has_more = len(batch) == self.limit
        return batch

    async def refresh(self) -> List[EventPhoto]:
        self.photos = []
        self.skip = 0
        self.has_more = bool(self.event_id)
        return await self.load_more()


class HighlightsFeed(SkipLimitFeed):
    """Curated event highlights."""

    async def _fetch(self) -> EventPhotosResponse:
        return await self.api.get_event_highlights(self.event_id, self.skip, self.limit)


class WallOfFameFeed(SkipLimitFeed):
    async def _fetch(self) -> EventPhotosResponse:
        return await self.api.get_wall_of_fame(self.event_id, self.skip, self.limit)


class EventPhotosFeed:
    """Every event photo, page by page, optionally narrowed to one person."""

    def __init__(self, api: InstaSnapClient, event_id: Optional[str], page_size: int = EVENT_PHOTOS_PAGE_SIZE):
        self.api = api
        self.event_id = event_id
        self.page_size = page_size
        self.all_photos: List[EventPhoto] = []
        self.people: List[Person] = []
        self.selected_person: Optional[str] = None
        self.page = 0
        self.has_more = bool(event_id)
        self.loading = False

    async def load_people(self) -> List[Person]:
        if not self.event_id:
            return []
        try:
            response = await self.api.get_people(self.event_id)
        except InstaSnapAPIError as e:
            logger.warning("Failed to fetch people", event_id=self.event_id, error=str(e))
            return self.people

        if response.success:
            self.people = response.people
        return self.people

    async def load_next_page(self) -> List[EventPhoto]:
        if not self.event_id or not self.has_more or self.loading:
            return []

        next_page = self.page + 1
        self.loading = True
        try:
            response = await self.api.get_all_event_photos(self.event_id, next_page, self.page_size)
        except InstaSnapAPIError as e:
            logger.warning("Failed to fetch event photos", page=next_page, error=str(e))
            return []
        finally:
            self.loading = False

        if not response.success:
            return []

        batch = response.response
        self.all_photos = batch if next_page == 1 else self.all_photos + batch
        self.page = next_page
        self.has_more = len(batch) == self.page_size
        return batch

    def select_person(self, group_id: Optional[str]) -> None:
        """Filter to one person's photos; None clears the filter."""
        self.selected_person = group_id

    @property
    def photos(self) -> List[EventPhoto]:
        if self.selected_person is None:
            return self.all_photos

        person = next((p for p in self.people if p.groupId == self.selected_person), None)
        if person is None:
            return self.all_photos

        image_ids = set(person.eventImages)
        return [photo for photo in self.all_photos if photo.id in image_ids]


class PersonPhotos:
    """All photos of one face group."""

    def __init__(self, api: InstaSnapClient, event_id: Optional[str], group_id: str):
        self.api = api
        self.event_id = event_id
        self.group_id = group_id
        self.photos: List[EventPhoto] = []
        self.loading = bool(event_id and group_id)

    async def load(self) -> List[EventPhoto]:
        if not (self.event_id and self.group_id):
            return []

        try:
            response = await self.api.get_person_photos(self.group_id, self.event_id)
            if response.success:
                self.photos = response.photos
        except InstaSnapAPIError as e:
            logger.warning("Failed to fetch person photos", group_id=self.group_id, error=str(e))
        finally:
            self.loading = False

        return self.photos
