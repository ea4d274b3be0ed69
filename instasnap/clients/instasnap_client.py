"""
HTTP client for the InstaSnap REST API.

One coroutine per remote endpoint. Two failure conventions are used and
callers rely on both:
- hard failures (transport errors, non-2xx responses) raise InstaSnapAPIError
- semantic "no" answers (wrong OTP, no face match) come back as normal
  results with a false ``verified``/``matched``/``success`` flag
"""

import logging
import time
from typing import Any, Dict, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..config import settings
from ..models.api_models import (
    AnonymousMatchResponse,
    ClusteringStatsResponse,
    ContributeResponse,
    EventPhotosResponse,
    MatchResponse,
    OTPResponse,
    PeopleResponse,
    PersonPhotosResponse,
    PhotoPermissionResponse,
    RegisterResponse,
    UserMatchesResponse,
    VerifyOTPResponse,
)
from ..models.internal_models import RegisterFormData, UploadFile
from ..observability import record_api_metrics, trace_function
from ..utils.form_utils import strip_dial_code
from ..utils.image_utils import to_absolute_url

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

PHOTO_PATH_FIELDS = ("image", "compressed", "thumbnail")


class InstaSnapAPIError(Exception):
    """Raised when an API call fails outright."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class InstaSnapClient:
    """
    Async client for the InstaSnap API.

    Wraps a single httpx.AsyncClient; pass ``client`` to share one or to
    inject a mocked transport.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        s3_base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Initialize the API client.

        Args:
            base_url: API base URL (default: settings.api_url)
            s3_base_url: Object storage base URL for relative photo paths
            timeout: Request timeout in seconds (default: settings.request_timeout)
            client: Existing httpx.AsyncClient to use instead of creating one
        """
        self.base_url = (base_url or settings.api_url).rstrip("/")
        self.s3_base_url = (s3_base_url or settings.s3_base_url).rstrip("/")
        self.timeout = timeout or settings.request_timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the underlying httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def aclose(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def _request(self, method: str, path: str, route: Optional[str] = None, **kwargs) -> httpx.Response:
        """
        Send one request, mapping transport failures to InstaSnapAPIError.

        Metrics are labelled with ``route`` (the path template) when given,
        so ids in the path do not end up in the endpoint label.

        Raises:
            InstaSnapAPIError: If the request could not be completed
        """
        endpoint = route or path
        start_time = time.time()
        try:
            response = await self.client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.TimeoutException as e:
            record_api_metrics(method, endpoint, None, time.time() - start_time)
            logger.error(f"Timeout calling {method} {path}: {e}")
            raise InstaSnapAPIError(f"Request timed out: {e}")
        except httpx.HTTPError as e:
            record_api_metrics(method, endpoint, None, time.time() - start_time)
            logger.error(f"Network error calling {method} {path}: {e}")
            raise InstaSnapAPIError(f"Network error: {e}")

        record_api_metrics(method, endpoint, response.status_code, time.time() - start_time)
        logger.debug(f"{method} {path} -> {response.status_code}")
        return response

    @staticmethod
    def _read_json(response: httpx.Response) -> Any:
        """Decoded JSON body, or None when the body is not JSON."""
        try:
            return response.json()
        except ValueError:
            return None

    def _handle_response(self, response: httpx.Response) -> Dict[str, Any]:
        """
        Decode a JSON response, raising on any non-2xx status.

        Raises:
            InstaSnapAPIError: With the backend's ``error`` text when present
        """
        data = self._read_json(response)

        if not response.is_success:
            if data is None:
                message = "Network error occurred"
            else:
                error = data.get("error") if isinstance(data, dict) else None
                message = error or f"HTTP {response.status_code}: {response.reason_phrase}"
            logger.warning(f"API request failed with {response.status_code}: {message}")
            raise InstaSnapAPIError(message, response.status_code)

        if not isinstance(data, dict):
            raise InstaSnapAPIError("Invalid JSON response from server", response.status_code)

        return data

    def _read_body(self, response: httpx.Response) -> Dict[str, Any]:
        """
        Decode a body for endpoints that signal failure in two ways.

        A 2xx response must carry a JSON object; an error response with an
        unreadable body decodes to an empty dict so generic messages apply.
        """
        data = self._read_json(response)
        if isinstance(data, dict):
            return data
        if response.is_success:
            raise InstaSnapAPIError("Invalid JSON response from server", response.status_code)
        return {}

    @staticmethod
    def _failure_message(response: httpx.Response, data: Dict[str, Any], fallback: str) -> Optional[str]:
        """
        Message describing the failure, or None when the call succeeded.

        The backend reports failure either with a non-2xx status or with
        ``success: false`` in a 2xx body; both count.
        """
        if response.is_success and data.get("success") is not False:
            return None
        return data.get("error") or data.get("message") or fallback

    @staticmethod
    def _parse(model: Type[ModelT], data: Dict[str, Any]) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(f"Unexpected {model.__name__} payload: {e}")
            raise InstaSnapAPIError(f"Unexpected response format: {e.error_count()} invalid field(s)")

    def _absolute_photo(self, photo: Dict[str, Any]) -> Dict[str, Any]:
        """Copy of a photo record with storage paths made absolute."""
        rewritten = dict(photo)
        for field in PHOTO_PATH_FIELDS:
            if isinstance(rewritten.get(field), str):
                rewritten[field] = to_absolute_url(rewritten[field], self.s3_base_url)
        return rewritten

    @trace_function("instasnap.register")
    async def register(self, form: RegisterFormData) -> RegisterResponse:
        """
        Register a new attendee with their selfie.

        Raises:
            InstaSnapAPIError: On any failure signal, preferring the backend's
                ``error`` text, then ``message``, then a generic message
        """
        data = {
            "mobile": form.mobile,
            "event": form.event_id,
            "phoneCode": strip_dial_code(form.phone_code),
            "emailId": form.email_id,
            "fullName": form.first_name,
        }
        logger.info(f"Registering mobile {form.mobile} for event {form.event_id}")

        response = await self._request(
            "POST",
            "/api/v1/auth/signup-mobile-with-country",
            data=data,
            files={"file": form.selfie.as_httpx_file()},
        )
        body = self._read_body(response)

        error = self._failure_message(response, body, "Registration failed")
        if error is not None:
            raise InstaSnapAPIError(error, response.status_code)

        return self._parse(RegisterResponse, body)

    @trace_function("instasnap.send_otp")
    async def send_otp(self, mobile: str, event_id: str, country_code: str = "+91") -> OTPResponse:
        """
        Ask the backend to send a login OTP to a mobile number.

        Raises:
            InstaSnapAPIError: On a non-2xx status or a ``success: false`` body
        """
        response = await self._request(
            "POST",
            "/api/v1/auth/login-mobile-with-country",
            json={
                "mobile": mobile,
                "event": event_id,
                "phoneCode": strip_dial_code(country_code),
            },
        )
        body = self._read_body(response)

        error = self._failure_message(response, body, "Failed to send OTP")
        if error is not None:
            raise InstaSnapAPIError(error, response.status_code)

        logger.info(f"OTP sent to mobile {mobile}")
        return self._parse(OTPResponse, body)

    @trace_function("instasnap.verify_otp")
    async def verify_otp(
        self,
        mobile: str,
        otp: str,
        event_id: str,
        country_code: str = "+91"
    ) -> VerifyOTPResponse:
        """
        Verify a login OTP.

        A rejected OTP is not an exception: the result has ``verified=False``
        and the backend's message. Transport failures still raise.
        """
        response = await self._request(
            "POST",
            "/api/v1/auth/verify-otp-with-country",
            json={
                "mobile": mobile,
                "otp": otp,
                "event": event_id,
                "phoneCode": strip_dial_code(country_code),
            },
        )
        body = self._read_body(response)

        error = self._failure_message(response, body, "OTP verification failed")
        if error is not None:
            logger.info(f"OTP verification rejected for mobile {mobile}: {error}")
            return VerifyOTPResponse(success=False, verified=False, message=error, error=error)

        logger.info(f"OTP verified for mobile {mobile}")
        return self._parse(VerifyOTPResponse, {**body, "verified": True})

    @trace_function("instasnap.match_anonymous")
    async def match_anonymous(self, file: UploadFile, event_id: str) -> AnonymousMatchResponse:
        """
        Match a selfie against the event's photos without logging in.

        Backend photo fields are renamed to the client's vocabulary and the
        group id / similarity are taken from ``matchedGroup`` when present.
        """
        response = await self._request(
            "POST",
            "/api/v1/insta-snap/match-anonymous",
            data={"eventId": event_id},
            files={"file": file.as_httpx_file()},
        )
        data = self._handle_response(response)

        photos = [
            {
                "imageId": photo.get("_id"),
                "originalUrl": photo.get("image"),
                "compressedUrl": photo.get("compressed"),
                "thumbnailUrl": photo.get("thumbnail"),
                "uploadDate": photo.get("uploadDate"),
            }
            for photo in data.get("photos") or []
        ]

        matched_group = data.get("matchedGroup") or {}
        group_id = matched_group.get("groupId") or data.get("groupId")
        similarity = matched_group.get("similarity")
        if similarity is None:
            similarity = data.get("similarity")

        logger.info(
            f"Anonymous match for event {event_id}: matched={data.get('matched')}, "
            f"photos={len(photos)}"
        )

        return self._parse(AnonymousMatchResponse, {
            "success": bool(data.get("success")),
            "message": data.get("message") or "",
            "matched": bool(data.get("matched")),
            "groupId": group_id,
            "similarity": similarity,
            "photos": photos,
            "processingTime": data.get("processingTime"),
        })

    @trace_function("instasnap.match_registered")
    async def match_registered(
        self,
        mobile: str,
        event_id: str,
        user_id: str,
        token: str,
        file: Optional[UploadFile] = None,
        force_refresh: bool = False,
        additional_data: Optional[Dict[str, Optional[str]]] = None
    ) -> MatchResponse:
        """
        Match a registered user's face against the event's photos.

        Args:
            mobile: Mobile number including dial code
            event_id: Event identifier
            user_id: Backend user id returned by OTP verification
            token: Bearer token returned by OTP verification
            file: New selfie; omit together with force_refresh=True to re-run
                matching against the selfie already stored server-side
            force_refresh: Ask the backend to recompute matches
            additional_data: Optional profile fields (name, designation,
                companyName, gender); empty values are not sent
        """
        data = {"mobile": mobile, "eventId": event_id, "userId": user_id}
        if force_refresh:
            data["forceRefresh"] = "true"
        for key, value in (additional_data or {}).items():
            if value:
                data[key] = value

        files = {"file": file.as_httpx_file()} if file is not None else None

        response = await self._request(
            "POST",
            "/api/v1/mobile/instasnap/match",
            data=data,
            files=files,
            headers={"Authorization": f"Bearer {token}"},
        )
        result = self._parse(MatchResponse, self._handle_response(response))

        logger.info(
            f"Registered match for user {user_id}: matched={result.matched}, "
            f"photos={len(result.FaceMatches)}"
        )
        return result

    @trace_function("instasnap.get_user_matches")
    async def get_user_matches(self, user_id: str, event_id: str) -> UserMatchesResponse:
        response = await self._request(
            "GET",
            "/api/v1/mobile/instasnap/user-matches",
            params={"userId": user_id, "eventId": event_id},
        )
        return self._parse(UserMatchesResponse, self._handle_response(response))

    @trace_function("instasnap.download_zip")
    async def download_zip(self, group_id: str) -> bytes:
        """
        Generate a ZIP archive of every photo in a face group.

        Raises:
            InstaSnapAPIError: If the archive could not be generated
        """
        response = await self._request(
            "POST",
            "/api/v1/insta-snap/generate-document",
            json={"groupId": group_id, "format": "zip"},
        )
        if not response.is_success:
            raise InstaSnapAPIError("Failed to generate ZIP", response.status_code)

        logger.info(f"Downloaded ZIP for group {group_id}: {len(response.content)} bytes")
        return response.content

    @trace_function("instasnap.download_photo")
    async def download_photo(self, image_id: str, event_id: str) -> bytes:
        response = await self._request(
            "GET",
            "/api/v1/insta-snap/download",
            params={"imageId": image_id, "event": event_id},
        )
        if not response.is_success:
            raise InstaSnapAPIError("Failed to download photo", response.status_code)
        return response.content

    def _event_photos(self, data: Dict[str, Any]) -> EventPhotosResponse:
        rewritten = {**data, "response": [self._absolute_photo(p) for p in data.get("response") or []]}
        return self._parse(EventPhotosResponse, rewritten)

    @trace_function("instasnap.get_wall_of_fame")
    async def get_wall_of_fame(self, event_id: str, skip: int = 0, limit: int = 50) -> EventPhotosResponse:
        response = await self._request(
            "GET",
            "/api/v1/insta-snap/wall-fame",
            params={"event": event_id, "skip": skip, "limit": limit},
        )
        return self._parse(EventPhotosResponse, self._handle_response(response))

    @trace_function("instasnap.get_event_highlights")
    async def get_event_highlights(self, event_id: str, skip: int = 0, limit: int = 50) -> EventPhotosResponse:
        """Curated highlight photos, with storage paths made absolute."""
        response = await self._request(
            "GET",
            "/api/v1/insta-snap",
            params={"event": event_id, "isHighlight": "true", "skip": skip, "limit": limit},
        )
        return self._event_photos(self._handle_response(response))

    @trace_function("instasnap.get_all_event_photos")
    async def get_all_event_photos(self, event_id: str, page: int = 1, limit: int = 50) -> EventPhotosResponse:
        """One page of every event photo, with storage paths made absolute."""
        response = await self._request(
            "GET",
            "/api/v1/insta-snap/event-images",
            params={"event": event_id, "page": page, "limit": limit},
        )
        return self._event_photos(self._handle_response(response))

    @trace_function("instasnap.get_people")
    async def get_people(self, event_id: str) -> PeopleResponse:
        """Face clusters found in the event, with representative faces made absolute."""
        response = await self._request(
            "GET",
            "/api/v1/insta-snap/people",
            params={"eventId": event_id},
        )
        data = self._handle_response(response)

        people = []
        for person in data.get("people") or []:
            person = dict(person)
            if isinstance(person.get("representativeFace"), str):
                person["representativeFace"] = to_absolute_url(person["representativeFace"], self.s3_base_url)
            people.append(person)

        return self._parse(PeopleResponse, {**data, "people": people})

    @trace_function("instasnap.get_person_photos")
    async def get_person_photos(self, group_id: str, event_id: str) -> PersonPhotosResponse:
        response = await self._request(
            "GET",
            f"/api/v1/insta-snap/people/{group_id}/photos",
            route="/api/v1/insta-snap/people/{group_id}/photos",
            params={"eventId": event_id},
        )
        data = self._handle_response(response)
        photos = [self._absolute_photo(p) for p in data.get("photos") or []]
        return self._parse(PersonPhotosResponse, {**data, "photos": photos})

    @trace_function("instasnap.contribute_photo")
    async def contribute_photo(self, file: UploadFile, event_id: str, user_id: str) -> ContributeResponse:
        """
        Upload a photo taken by an attendee to the event gallery.

        Raises:
            InstaSnapAPIError: On a non-2xx status or a ``success: false`` body
        """
        response = await self._request(
            "POST",
            "/api/v1/insta-snap/contribute",
            data={"eventId": event_id, "userId": user_id},
            files={"file": file.as_httpx_file()},
        )
        body = self._read_body(response)

        error = self._failure_message(response, body, "Failed to upload photo")
        if error is not None:
            raise InstaSnapAPIError(error, response.status_code)

        return self._parse(ContributeResponse, body)

    @trace_function("instasnap.get_photo_permission")
    async def get_photo_permission(self, event_id: str) -> PhotoPermissionResponse:
        response = await self._request(
            "GET",
            "/api/v1/photo-permission",
            params={"searchkey": "", "photoViewAccess": "", "event": event_id},
        )
        return self._parse(PhotoPermissionResponse, self._handle_response(response))

    @trace_function("instasnap.get_clustering_stats")
    async def get_clustering_stats(self, event_id: str) -> ClusteringStatsResponse:
        response = await self._request(
            "GET",
            "/api/v1/insta-snap/clustering-stats",
            params={"eventId": event_id},
        )
        return self._parse(ClusteringStatsResponse, self._handle_response(response))


# Global client instance
_api_client: Optional[InstaSnapClient] = None


def get_api_client() -> InstaSnapClient:
    """
    Get the global API client instance.

    Returns:
        InstaSnapClient: The global API client instance
    """
    global _api_client
    if _api_client is None:
        _api_client = InstaSnapClient()
    return _api_client
