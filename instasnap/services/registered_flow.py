"""
Login-and-match flow for registered attendees.

Steps: mobile -> otp -> selfie -> photos, with register reachable from
mobile when the number is unknown and the event allows self-registration.
Returning users are restored from the session cache to skip steps they
have already completed.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

import structlog

from instasnap.clients.instasnap_client import InstaSnapAPIError, InstaSnapClient
from instasnap.config import settings
from instasnap.models.api_models import FaceMatch, PhotoPermission
from instasnap.models.internal_models import RegisterFormData, UploadFile
from instasnap.services.flow_base import SelfieFlow
from instasnap.services.session_cache import SessionCache
from instasnap.utils.form_utils import validate_email, validate_otp, validate_phone_number
from instasnap.utils.image_utils import validate_image_upload

logger = structlog.get_logger()

# Substrings the backend uses when a mobile number has no account
UNKNOWN_USER_HINTS = ("not registered", "not found", "does not exist", "no user", "no account")


class RegisteredStep(str, Enum):
    MOBILE = "mobile"
    REGISTER = "register"
    OTP = "otp"
    SELFIE = "selfie"
    PHOTOS = "photos"


@dataclass
class RegisteredState:
    step: RegisteredStep = RegisteredStep.MOBILE
    mobile: str = ""
    selfie: Optional[UploadFile] = None
    photos: List[Dict[str, Any]] = field(default_factory=list)
    group_id: Optional[str] = None
    user_id: Optional[str] = None
    token: Optional[str] = None
    permission: Optional[PhotoPermission] = None
    is_loading_permissions: bool = True
    is_new_user: bool = False
    loading: bool = False
    error: Optional[str] = None


def face_match_to_photo(match: FaceMatch) -> Dict[str, Any]:
    """Gallery record for a matched photo (matches only carry one full-size image)."""
    photo = {
        "_id": match.id,
        "image": match.image,
        "compressed": match.image,
        "thumbnail": match.thumbnail,
        "uploadDate": match.matchDate,
        "event": match.event,
    }
    return {k: v for k, v in photo.items() if v is not None}


class RegisteredFlow(SelfieFlow):
    """State machine driving the registered-user pages."""

    def __init__(
        self,
        api: InstaSnapClient,
        cache: SessionCache,
        event_id: Optional[str],
        country_code: Optional[str] = None
    ):
        super().__init__(api, cache, event_id)
        self.country_code = country_code or settings.country_code
        self.state = RegisteredState()

    @property
    def can_self_register(self) -> bool:
        """Attendees-only events accept logins but not new registrations."""
        permission = self.state.permission
        return permission is None or permission.photoViewAccess != "Attendees"

    @property
    def can_reuse_stored_selfie(self) -> bool:
        """True when the backend already holds this user's selfie."""
        user_data = self.cache.get_user_data()
        return isinstance(user_data, dict) and bool(user_data.get("awsKeyImage"))

    async def initialize(self) -> RegisteredStep:
        """
        Restore a returning user and load the event's photo permission.

        Without an event id the flow stays in its loading state.
        """
        if not self.is_ready:
            logger.warning("Registered flow idle: no event configured")
            return self.state.step

        if self._restore_verified_session() or await self._restore_authenticated_user():
            self.state.is_loading_permissions = False
            return self.state.step

        await self._load_permission()
        return self.state.step

    def _restore_verified_session(self) -> bool:
        session = self.cache.get_user_session()
        if session is None:
            saved_mobile = self.cache.get_last_mobile()
            if saved_mobile:
                self.state.mobile = saved_mobile
            return False

        self.state.mobile = session.mobile
        cached = self.cache.get_photos_cache(session.mobile, self.event_id)
        if not cached or not cached.get("photos"):
            return False

        self.state.photos = cached["photos"]
        self.state.group_id = cached.get("groupId")
        self.state.token = self.cache.get_auth_token()
        user_data = self.cache.get_user_data() or {}
        self.state.user_id = user_data.get("_id")
        self.state.step = RegisteredStep.PHOTOS
        logger.info("Restored cached photos", mobile=session.mobile, photos=len(self.state.photos))
        return True

    async def _restore_authenticated_user(self) -> bool:
        if not self.cache.is_authenticated():
            return False

        user_data = self.cache.get_user_data() or {}
        user_id = user_data.get("_id")
        if not user_id:
            return False

        self.state.token = self.cache.get_auth_token()
        self.state.user_id = user_id

        photos = self.cache.get_matched_photos()
        if not photos:
            try:
                result = await self.api.get_user_matches(user_id, self.event_id)
                photos = [face_match_to_photo(m) for m in result.matches]
            except InstaSnapAPIError as e:
                logger.warning("Could not load existing matches", user_id=user_id, error=str(e))
                photos = []

        if photos:
            self.state.photos = photos
            self.state.group_id = self.cache.get_group_id()
            self.state.step = RegisteredStep.PHOTOS
        else:
            self.state.step = RegisteredStep.SELFIE

        logger.info("Restored authenticated user", user_id=user_id, step=self.state.step.value)
        return True

    async def _load_permission(self) -> None:
        try:
            response = await self.api.get_photo_permission(self.event_id)
            if response.success and response.response:
                self.state.permission = response.response[0]
        except InstaSnapAPIError as e:
            logger.warning("Failed to fetch photo permissions", event_id=self.event_id, error=str(e))
        finally:
            self.state.is_loading_permissions = False

    def start_registration(self) -> bool:
        """Switch from the login form to the registration form when allowed."""
        if not self.can_self_register:
            self.state.error = "Registration is closed for this event. Please log in."
            return False

        self.state.error = None
        self.state.step = RegisteredStep.REGISTER
        return True

    def back_to_login(self) -> None:
        self.state.error = None
        self.state.step = RegisteredStep.MOBILE

    async def send_otp(self, mobile: Optional[str] = None) -> bool:
        """Request an OTP; moves to the OTP step, or to registration for unknown numbers."""
        if mobile is not None:
            self.state.mobile = mobile.strip()

        if not validate_phone_number(self.state.mobile):
            self.state.error = "Please enter a valid 10-digit mobile number"
            return False

        self.state.loading = True
        self.state.error = None
        try:
            await self.api.send_otp(self.state.mobile, self.event_id, self.country_code)
        except InstaSnapAPIError as e:
            message = str(e) or "Failed to send OTP"
            if self._is_unknown_user(message) and self.can_self_register:
                logger.info("Unknown mobile, offering registration", mobile=self.state.mobile)
                self.state.step = RegisteredStep.REGISTER
                self.state.error = "This number is not registered yet. Please register to continue."
            else:
                self.state.error = message
            return False
        finally:
            self.state.loading = False

        self.cache.set_last_mobile(self.state.mobile)
        self.state.step = RegisteredStep.OTP
        return True

    @staticmethod
    def _is_unknown_user(message: str) -> bool:
        lowered = message.lower()
        return any(hint in lowered for hint in UNKNOWN_USER_HINTS)

    async def register(self, first_name: str, email_id: str, selfie: Optional[UploadFile] = None) -> bool:
        """Register a new attendee, then send their first OTP."""
        if selfie is not None and not await self.select_selfie(selfie):
            return False

        if not validate_phone_number(self.state.mobile):
            self.state.error = "Please enter a valid 10-digit mobile number"
            return False
        if not validate_email(email_id):
            self.state.error = "Please enter a valid email address"
            return False
        if not first_name.strip():
            self.state.error = "Please enter your name"
            return False
        if self.state.selfie is None:
            self.state.error = "Please upload a selfie"
            return False

        self.state.loading = True
        self.state.error = None
        try:
            await self.api.register(RegisterFormData(
                first_name=first_name.strip(),
                mobile=self.state.mobile,
                email_id=email_id,
                event_id=self.event_id,
                phone_code=self.country_code,
                selfie=self.state.selfie,
            ))
            self.state.is_new_user = True
            self.cache.set_last_mobile(self.state.mobile)
            logger.info("Registered new attendee", mobile=self.state.mobile)
        except InstaSnapAPIError as e:
            message = str(e) or "Registration failed"
            if "already registered" in message.lower():
                self.state.error = "You are already registered! Please use Login instead."
            else:
                self.state.error = message
            return False
        finally:
            self.state.loading = False

        return await self.send_otp()

    async def verify_otp(self, otp: str) -> bool:
        """Verify the OTP and route to the selfie or photos step."""
        otp = otp.strip()
        if not validate_otp(otp):
            self.state.error = "Please enter the 4-digit OTP"
            return False

        self.state.loading = True
        self.state.error = None
        try:
            result = await self.api.verify_otp(self.state.mobile, otp, self.event_id, self.country_code)
        except InstaSnapAPIError as e:
            self.state.error = str(e) or "Failed to verify OTP"
            return False
        finally:
            self.state.loading = False

        if not (result.verified and result.token and result.userId):
            self.state.error = result.message or result.error or "Invalid OTP"
            return False

        self.state.token = result.token
        self.state.user_id = result.userId
        self.cache.set_user_session(self.state.mobile, self.event_id, True)
        self.cache.set_auth_token(result.token)
        if result.refreshToken:
            self.cache.set_refresh_token(result.refreshToken)
        if result.user is not None:
            self.cache.set_user_data(result.user.to_cache())
        else:
            self.cache.set_user_data({"_id": result.userId, "mobile": self.state.mobile})

        if result.requiresSelfie or not result.photos:
            self.state.step = RegisteredStep.SELFIE
        else:
            self._store_matches([face_match_to_photo(m) for m in result.photos], result.groupId)
            self.state.step = RegisteredStep.PHOTOS

        logger.info("OTP verified", user_id=result.userId, step=self.state.step.value)
        return True

    async def match(self) -> bool:
        """
        Match the user's face against the event photos.

        With no selfie selected, a selfie already stored server-side is
        re-matched instead of uploading a new one.
        """
        use_stored_selfie = self.state.selfie is None and self.can_reuse_stored_selfie
        if self.state.selfie is None and not use_stored_selfie:
            self.state.error = "Please upload a selfie first"
            return False

        if not self.state.user_id or not self.state.token:
            self.state.error = "Authentication failed. Please try logging in again."
            self.state.step = RegisteredStep.MOBILE
            return False

        self.state.loading = True
        self.state.error = None
        try:
            result = await self.api.match_registered(
                f"{self.country_code}{self.state.mobile}",
                self.event_id,
                self.state.user_id,
                self.state.token,
                file=self.state.selfie,
                force_refresh=use_stored_selfie,
            )
        except InstaSnapAPIError as e:
            self.state.error = str(e) or "Failed to match photos"
            return False
        finally:
            self.state.loading = False

        if not (result.matched and result.FaceMatches):
            self.state.error = result.message or "No matching photos found"
            return False

        group_id = result.groupInfo.groupId if result.groupInfo else result.groupId
        self._store_matches([face_match_to_photo(m) for m in result.FaceMatches], group_id)
        self.state.step = RegisteredStep.PHOTOS
        logger.info("Registered match succeeded", user_id=self.state.user_id, photos=len(self.state.photos))
        return True

    def _store_matches(self, photos: List[Dict[str, Any]], group_id: Optional[str]) -> None:
        self.state.photos = photos
        cached: Dict[str, Any] = {"photos": photos}
        if group_id:
            self.state.group_id = group_id
            self.cache.set_group_id(group_id)
            cached["groupId"] = group_id
        self.cache.set_photos_cache(self.state.mobile, self.event_id, cached)
        self.cache.set_matched_photos(photos)

    async def contribute_photo(self, file: UploadFile) -> bool:
        """Upload an attendee's own photo to the event gallery."""
        is_valid, message = validate_image_upload(file)
        if not is_valid:
            self.state.error = message
            return False
        if not self.state.user_id:
            self.state.error = "Please log in to contribute photos"
            return False

        self.state.loading = True
        self.state.error = None
        try:
            await self.api.contribute_photo(file, self.event_id, self.state.user_id)
            return True
        except InstaSnapAPIError as e:
            self.state.error = str(e) or "Failed to upload photo"
            return False
        finally:
            self.state.loading = False

    def logout(self) -> None:
        """Forget the logged-in user and return to the login form."""
        if self.state.mobile:
            self.cache.clear_photos_cache(self.state.mobile, self.event_id)
        self.cache.clear_auth()

        permission = self.state.permission
        self.state = RegisteredState(
            permission=permission,
            is_loading_permissions=False,
            mobile=self.cache.get_last_mobile() or "",
        )
        logger.info("Logged out")
