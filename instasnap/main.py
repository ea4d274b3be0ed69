"""Wiring for applications embedding the InstaSnap client."""

from dataclasses import dataclass
from typing import Optional

import structlog

from instasnap.clients.instasnap_client import InstaSnapClient
from instasnap.clients.storage_client import FileStore, MemoryStore, StorageManager
from instasnap.config import Settings, settings as default_settings
from instasnap.observability import configure_logging, setup_observability
from instasnap.services.anonymous_flow import AnonymousFlow
from instasnap.services.gallery_service import EventPhotosFeed, HighlightsFeed
from instasnap.services.registered_flow import RegisteredFlow
from instasnap.services.session_cache import SessionCache

logger = structlog.get_logger()


@dataclass
class AppContext:
    """Shared API client and session cache plus factories for each flow."""

    settings: Settings
    api: InstaSnapClient
    cache: SessionCache

    def registered_flow(self) -> RegisteredFlow:
        return RegisteredFlow(self.api, self.cache, self.settings.event_id, self.settings.country_code)

    def anonymous_flow(self) -> AnonymousFlow:
        return AnonymousFlow(self.api, self.cache, self.settings.event_id)

    def highlights_feed(self) -> HighlightsFeed:
        return HighlightsFeed(self.api, self.settings.event_id)

    def event_photos_feed(self) -> EventPhotosFeed:
        return EventPhotosFeed(self.api, self.settings.event_id)

    async def aclose(self) -> None:
        await self.api.aclose()


def create_app_context(
    config: Optional[Settings] = None,
    storage: Optional[StorageManager] = None,
    configure: bool = True
) -> AppContext:
    """
    Build the application context from settings.

    Args:
        config: Settings to use (default: the global settings)
        storage: Storage to use (default: FileStore at config.storage_path + MemoryStore)
        configure: Configure logging and telemetry from the settings
    """
    config = config or default_settings

    if configure:
        configure_logging(config.log_level, json_logs=config.log_format == "json")
        if config.otlp_endpoint:
            setup_observability(otlp_endpoint=config.otlp_endpoint)

    if storage is None:
        storage = StorageManager(persistent=FileStore(config.storage_path), session=MemoryStore())

    api = InstaSnapClient(
        base_url=config.api_url,
        s3_base_url=config.s3_base_url,
        timeout=config.request_timeout,
    )
    cache = SessionCache(storage, prefix=config.storage_prefix)

    if not config.event_id:
        logger.warning("EVENT_ID is not set; event flows will stay idle")

    logger.info("InstaSnap client ready", api_url=config.api_url, event_id=config.event_id)
    return AppContext(settings=config, api=api, cache=cache)
