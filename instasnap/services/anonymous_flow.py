"""Quick match for visitors who have not logged in: upload a selfie, see results."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import structlog

from instasnap.clients.instasnap_client import InstaSnapAPIError
from instasnap.models.api_models import AnonymousPhoto
from instasnap.models.internal_models import UploadFile
from instasnap.services.flow_base import SelfieFlow

logger = structlog.get_logger()


class AnonymousStep(str, Enum):
    UPLOAD = "upload"
    RESULTS = "results"


@dataclass
class AnonymousState:
    step: AnonymousStep = AnonymousStep.UPLOAD
    selfie: Optional[UploadFile] = None
    photos: List[AnonymousPhoto] = field(default_factory=list)
    matched: bool = False
    group_id: Optional[str] = None
    processing_time: Optional[str] = None
    loading: bool = False
    error: Optional[str] = None


class AnonymousFlow(SelfieFlow):
    """
    ``upload -> results`` flow.

    The selfie used for the first successful match is retained for an hour
    so "find more photos" can re-query without a new upload.
    """

    def __init__(self, api, cache, event_id):
        super().__init__(api, cache, event_id)
        self.state = AnonymousState()

    async def match(self) -> bool:
        """Match the selected selfie; True when photos were found."""
        if self.state.selfie is None:
            self.state.error = "Please upload a selfie first"
            return False

        return await self._match(self.state.selfie, retain_selfie=True)

    async def find_more_photos(self) -> bool:
        """Re-run matching with the retained selfie."""
        selfie = self.cache.get_anonymous_selfie()
        if selfie is None:
            self.state.error = "Your selfie is no longer available. Please upload it again."
            return False

        self.state.selfie = selfie
        return await self._match(selfie, retain_selfie=False)

    async def _match(self, selfie: UploadFile, retain_selfie: bool) -> bool:
        if not self.is_ready:
            logger.warning("Anonymous match skipped: no event configured")
            return False

        self.state.loading = True
        self.state.error = None
        try:
            result = await self.api.match_anonymous(selfie, self.event_id)
        except InstaSnapAPIError as e:
            logger.warning("Anonymous match failed", event_id=self.event_id, error=str(e))
            self.state.error = str(e) or "Failed to match photos"
            return False
        finally:
            self.state.loading = False

        self.state.matched = result.matched
        self.state.processing_time = None if result.processingTime is None else str(result.processingTime)

        if not (result.matched and result.photos):
            self.state.error = result.message or "No matching photos found"
            logger.info("Anonymous match found nothing", event_id=self.event_id)
            return False

        self.state.photos = result.photos
        if result.groupId:
            self.state.group_id = result.groupId
            self.cache.set_group_id(result.groupId)

        if retain_selfie:
            await self.cache.set_anonymous_selfie(selfie)

        self.state.step = AnonymousStep.RESULTS
        logger.info(
            "Anonymous match succeeded",
            event_id=self.event_id,
            group_id=self.state.group_id,
            photos=len(result.photos)
        )
        return True

    def reset(self) -> None:
        """Back to an empty upload form; the retained selfie is kept."""
        self.state = AnonymousState()
