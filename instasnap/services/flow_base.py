"""Behaviour shared by the selfie-matching flows."""

import asyncio
from typing import Optional

import structlog

from instasnap.clients.instasnap_client import InstaSnapAPIError, InstaSnapClient
from instasnap.models.internal_models import UploadFile
from instasnap.services.session_cache import SessionCache
from instasnap.utils.image_utils import ImageProcessingError, compress_image, validate_image_upload

logger = structlog.get_logger()


class SelfieFlow:
    """
    Base for flows that upload a selfie and can download the matched group.

    Subclasses provide ``self.state`` with ``selfie``, ``group_id``,
    ``loading`` and ``error`` attributes.
    """

    def __init__(self, api: InstaSnapClient, cache: SessionCache, event_id: Optional[str]):
        self.api = api
        self.cache = cache
        self.event_id = event_id

    @property
    def is_ready(self) -> bool:
        """False when no event is configured; the flow then stays idle."""
        return bool(self.event_id)

    def dismiss_error(self) -> None:
        self.state.error = None

    async def select_selfie(self, file: UploadFile) -> bool:
        """Validate, compress and keep a selfie for the next match; False with an error otherwise."""
        self.state.error = None
        is_valid, message = validate_image_upload(file)
        if not is_valid:
            self.state.error = message
            return False

        try:
            compressed = await asyncio.to_thread(compress_image, file)
        except ImageProcessingError as e:
            logger.warning("Selfie could not be processed", name=file.name, error=str(e))
            self.state.error = "Failed to process image"
            return False

        self.state.selfie = compressed
        logger.debug("Selfie selected", name=file.name, size=file.size, compressed_size=compressed.size)
        return True

    async def download_zip(self) -> Optional[bytes]:
        """ZIP archive of the matched group, or None with ``state.error`` set."""
        if not self.state.group_id:
            self.state.error = "No group ID available for download"
            return None

        self.state.loading = True
        self.state.error = None
        try:
            archive = await self.api.download_zip(self.state.group_id)
            logger.info("ZIP downloaded", group_id=self.state.group_id, size=len(archive))
            return archive
        except InstaSnapAPIError as e:
            logger.warning("ZIP download failed", group_id=self.state.group_id, error=str(e))
            self.state.error = str(e) or "Failed to download ZIP"
            return None
        finally:
            self.state.loading = False
