"""
Tests for the registered-user login and match flow.
"""

import json

import pytest

from instasnap.clients.instasnap_client import InstaSnapAPIError
from instasnap.clients.storage_client import FileStore, MemoryStore, StorageManager
from instasnap.models.api_models import (
    FaceMatch,
    MatchResponse,
    OTPResponse,
    PhotoPermissionResponse,
    RegisterResponse,
    UserMatchesResponse,
    VerifyOTPResponse,
)
from instasnap.models.internal_models import UploadFile
from instasnap.services.registered_flow import RegisteredFlow, RegisteredStep, face_match_to_photo
from instasnap.services.session_cache import SessionCache

MOBILE = "9876543210"
EVENT = "evt1"

MATCH = {"_id": "m1", "image": "https://s3.test/1.jpg", "thumbnail": "https://s3.test/1t.jpg", "matchDate": "2024-05-01"}


def permission(access):
    return PhotoPermissionResponse.model_validate({
        "success": True,
        "response": [{"_id": "perm", "photoViewAccess": access}],
    })


@pytest.fixture
def flow(mock_api, cache):
    mock_api.get_photo_permission.return_value = permission("Everyone")
    return RegisteredFlow(mock_api, cache, EVENT, country_code="+91")


class TestInitialize:
    """Test cases for restoring a returning user."""

    @pytest.mark.asyncio
    async def test_without_event_stays_idle(self, mock_api, cache):
        """Test that nothing is fetched when no event is configured."""
        flow = RegisteredFlow(mock_api, cache, None)

        step = await flow.initialize()

        assert step == RegisteredStep.MOBILE
        assert flow.state.is_loading_permissions is True
        mock_api.get_photo_permission.assert_not_called()

    @pytest.mark.asyncio
    async def test_fresh_visitor_loads_permission(self, flow, mock_api, cache):
        """Test that a new visitor lands on the mobile step with the last number prefilled."""
        cache.set_last_mobile(MOBILE)

        step = await flow.initialize()

        assert step == RegisteredStep.MOBILE
        assert flow.state.mobile == MOBILE
        assert flow.state.permission.photoViewAccess == "Everyone"
        assert flow.state.is_loading_permissions is False
        mock_api.get_photo_permission.assert_awaited_once_with(EVENT)

    @pytest.mark.asyncio
    async def test_permission_failure_is_tolerated(self, flow, mock_api):
        """Test that the page still opens when permissions cannot be loaded."""
        mock_api.get_photo_permission.side_effect = InstaSnapAPIError("boom", 500)

        await flow.initialize()

        assert flow.state.permission is None
        assert flow.state.is_loading_permissions is False
        assert flow.can_self_register is True

    @pytest.mark.asyncio
    async def test_cached_photos_skip_to_gallery(self, flow, mock_api, cache):
        """Test that a verified session with fresh cached photos resumes on the photos step."""
        cache.set_user_session(MOBILE, EVENT, True)
        cache.set_photos_cache(MOBILE, EVENT, {"photos": [{"_id": "p1"}], "groupId": "g-1"})

        step = await flow.initialize()

        assert step == RegisteredStep.PHOTOS
        assert flow.state.photos == [{"_id": "p1"}]
        assert flow.state.group_id == "g-1"
        mock_api.get_photo_permission.assert_not_called()

    @pytest.mark.asyncio
    async def test_expired_photo_cache_does_not_restore(self, flow, cache, clock):
        """Test that a stale photo cache sends the user back through login."""
        cache.set_user_session(MOBILE, EVENT, True)
        cache.set_photos_cache(MOBILE, EVENT, {"photos": [{"_id": "p1"}]})
        clock.advance(6 * 60)

        step = await flow.initialize()

        assert step == RegisteredStep.MOBILE
        assert flow.state.mobile == MOBILE

    @pytest.mark.asyncio
    async def test_authenticated_user_with_stored_matches(self, flow, mock_api, cache):
        """Test that stored matches restore the gallery without a request."""
        cache.set_auth_token("tok")
        cache.set_user_data({"_id": "u1"})
        cache.set_matched_photos([{"_id": "p1"}])
        cache.set_group_id("g-1")

        step = await flow.initialize()

        assert step == RegisteredStep.PHOTOS
        assert flow.state.user_id == "u1"
        assert flow.state.token == "tok"
        assert flow.state.group_id == "g-1"
        mock_api.get_user_matches.assert_not_called()

    @pytest.mark.asyncio
    async def test_authenticated_user_fetches_matches(self, flow, mock_api, cache):
        """Test that matches are fetched when none are stored."""
        cache.set_auth_token("tok")
        cache.set_user_data({"_id": "u1"})
        mock_api.get_user_matches.return_value = UserMatchesResponse.model_validate(
            {"success": True, "matches": [MATCH], "count": 1}
        )

        step = await flow.initialize()

        assert step == RegisteredStep.PHOTOS
        assert flow.state.photos[0]["_id"] == "m1"
        mock_api.get_user_matches.assert_awaited_once_with("u1", EVENT)

    @pytest.mark.asyncio
    async def test_authenticated_user_without_matches_goes_to_selfie(self, flow, mock_api, cache):
        """Test that a logged-in user with no matches is asked for a selfie."""
        cache.set_auth_token("tok")
        cache.set_user_data({"_id": "u1"})
        mock_api.get_user_matches.side_effect = InstaSnapAPIError("boom")

        step = await flow.initialize()

        assert step == RegisteredStep.SELFIE

    @pytest.mark.asyncio
    async def test_wrong_type_user_data_is_ignored(self, flow, mock_api, storage, cache):
        """Test that user data stored as a JSON string falls back to the login form."""
        cache.set_auth_token("tok")
        cache.set_last_mobile(MOBILE)
        storage.persistent.set_item("instasnap_user_data", json.dumps("abc"))

        step = await flow.initialize()

        assert step == RegisteredStep.MOBILE
        assert flow.state.mobile == MOBILE
        mock_api.get_photo_permission.assert_awaited_once_with(EVENT)

    @pytest.mark.asyncio
    async def test_wrong_type_matched_photos_are_refetched(self, flow, mock_api, storage, cache):
        """Test that matched photos stored as an object are fetched again."""
        cache.set_auth_token("tok")
        cache.set_user_data({"_id": "u1"})
        storage.persistent.set_item("instasnap_matched_photos", json.dumps({"_id": "p1"}))
        mock_api.get_user_matches.return_value = UserMatchesResponse.model_validate(
            {"success": True, "matches": [MATCH], "count": 1}
        )

        step = await flow.initialize()

        assert step == RegisteredStep.PHOTOS
        mock_api.get_user_matches.assert_awaited_once_with("u1", EVENT)


class TestSendOTP:
    """Test cases for the mobile step."""

    @pytest.mark.asyncio
    async def test_invalid_mobile(self, flow, mock_api):
        """Test that malformed numbers are rejected locally."""
        assert await flow.send_otp("12345") is False

        assert flow.state.error == "Please enter a valid 10-digit mobile number"
        mock_api.send_otp.assert_not_called()

    @pytest.mark.asyncio
    async def test_success_moves_to_otp(self, flow, mock_api, cache):
        """Test that a sent OTP advances the flow and remembers the number."""
        mock_api.send_otp.return_value = OTPResponse(message="OTP sent")

        assert await flow.send_otp(f" {MOBILE} ") is True

        assert flow.state.step == RegisteredStep.OTP
        assert cache.get_last_mobile() == MOBILE
        mock_api.send_otp.assert_awaited_once_with(MOBILE, EVENT, "+91")

    @pytest.mark.asyncio
    async def test_unwritable_storage_does_not_fail_a_sent_otp(self, mock_api, clock, tmp_path):
        """Test that a sent OTP still advances the flow when the last mobile cannot be saved."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        storage = StorageManager(persistent=FileStore(blocker / "storage.json"), session=MemoryStore())
        cache = SessionCache(storage, clock=clock, prefix="instasnap_")
        mock_api.send_otp.return_value = OTPResponse(message="OTP sent")
        flow = RegisteredFlow(mock_api, cache, EVENT, country_code="+91")

        assert await flow.send_otp(MOBILE) is True

        assert flow.state.step == RegisteredStep.OTP
        assert flow.state.error is None
        assert cache.get_last_mobile() is None

    @pytest.mark.asyncio
    async def test_unknown_number_offers_registration(self, flow, mock_api):
        """Test that an unregistered number is routed to the registration form."""
        mock_api.send_otp.side_effect = InstaSnapAPIError("User not found", 404)

        assert await flow.send_otp(MOBILE) is False

        assert flow.state.step == RegisteredStep.REGISTER
        assert flow.state.error == "This number is not registered yet. Please register to continue."

    @pytest.mark.asyncio
    async def test_unknown_number_on_attendee_only_event(self, flow, mock_api):
        """Test that attendee-only events do not offer registration."""
        mock_api.get_photo_permission.return_value = permission("Attendees")
        await flow.initialize()
        mock_api.send_otp.side_effect = InstaSnapAPIError("User not found", 404)

        assert await flow.send_otp(MOBILE) is False

        assert flow.state.step == RegisteredStep.MOBILE
        assert flow.state.error == "User not found"
        assert flow.start_registration() is False

    @pytest.mark.asyncio
    async def test_other_failures_keep_the_message(self, flow, mock_api):
        """Test that unrelated failures are shown as-is."""
        mock_api.send_otp.side_effect = InstaSnapAPIError("SMS gateway unavailable", 503)

        assert await flow.send_otp(MOBILE) is False

        assert flow.state.step == RegisteredStep.MOBILE
        assert flow.state.error == "SMS gateway unavailable"
        assert flow.state.loading is False


class TestRegister:
    """Test cases for self-registration."""

    @pytest.mark.asyncio
    async def test_register_then_sends_otp(self, flow, mock_api, cache, selfie):
        """Test that a successful registration triggers the first OTP."""
        flow.state.mobile = MOBILE
        mock_api.register.return_value = RegisterResponse(success=True, message="Registered")
        mock_api.send_otp.return_value = OTPResponse(message="OTP sent")

        assert await flow.register("Asha", "asha@example.com", selfie) is True

        assert flow.state.step == RegisteredStep.OTP
        assert flow.state.is_new_user is True
        assert cache.get_last_mobile() == MOBILE
        form = mock_api.register.await_args.args[0]
        assert form.first_name == "Asha"
        assert form.phone_code == "+91"
        assert form.selfie is flow.state.selfie
        assert form.selfie.name == selfie.name
        assert form.selfie.content_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_undecodable_selfie_is_not_registered(self, flow, mock_api):
        """Test that a selfie which cannot be compressed stops registration."""
        flow.state.mobile = MOBILE
        broken = UploadFile(name="selfie.jpg", content=b"not really a jpeg", content_type="image/jpeg")

        assert await flow.register("Asha", "asha@example.com", broken) is False

        assert flow.state.error == "Failed to process image"
        mock_api.register.assert_not_called()

    @pytest.mark.asyncio
    async def test_already_registered(self, flow, mock_api, selfie):
        """Test the hint shown when the number already has an account."""
        flow.state.mobile = MOBILE
        mock_api.register.side_effect = InstaSnapAPIError("User already registered", 400)

        assert await flow.register("Asha", "asha@example.com", selfie) is False

        assert flow.state.error == "You are already registered! Please use Login instead."
        mock_api.send_otp.assert_not_called()

    @pytest.mark.asyncio
    async def test_form_validation(self, flow, mock_api, selfie):
        """Test local validation of the registration form."""
        flow.state.mobile = MOBILE

        assert await flow.register("Asha", "not-an-email", selfie) is False
        assert flow.state.error == "Please enter a valid email address"

        assert await flow.register("  ", "asha@example.com", selfie) is False
        assert flow.state.error == "Please enter your name"

        pdf = UploadFile(name="cv.pdf", content=b"%PDF", content_type="application/pdf")
        assert await flow.register("Asha", "asha@example.com", pdf) is False
        assert flow.state.error == "Please upload an image file"

        mock_api.register.assert_not_called()


class TestVerifyOTP:
    """Test cases for the OTP step."""

    @pytest.fixture
    def otp_flow(self, flow):
        flow.state.mobile = MOBILE
        flow.state.step = RegisteredStep.OTP
        return flow

    @pytest.mark.asyncio
    async def test_wrong_otp(self, otp_flow, mock_api, cache):
        """Test that a rejected OTP keeps the user on the OTP step."""
        mock_api.verify_otp.return_value = VerifyOTPResponse(verified=False, message="bad otp")

        assert await otp_flow.verify_otp("1234") is False

        assert otp_flow.state.step == RegisteredStep.OTP
        assert otp_flow.state.error == "bad otp"
        assert cache.is_authenticated() is False

    @pytest.mark.asyncio
    async def test_malformed_otp(self, otp_flow, mock_api):
        """Test that OTPs are validated locally."""
        assert await otp_flow.verify_otp("12") is False

        assert otp_flow.state.error == "Please enter the 4-digit OTP"
        mock_api.verify_otp.assert_not_called()

    @pytest.mark.asyncio
    async def test_requires_selfie(self, otp_flow, mock_api, cache):
        """Test that a verified user without matches goes to the selfie step."""
        mock_api.verify_otp.return_value = VerifyOTPResponse.model_validate({
            "success": True,
            "verified": True,
            "token": "tok",
            "refreshToken": "refresh",
            "userId": "u1",
            "user": {"_id": "u1", "fullName": "Asha"},
            "requiresSelfie": True,
        })

        assert await otp_flow.verify_otp("1234") is True

        assert otp_flow.state.step == RegisteredStep.SELFIE
        assert cache.is_authenticated() is True
        assert cache.get_refresh_token() == "refresh"
        assert cache.get_user_data() == {"_id": "u1", "fullName": "Asha"}
        assert cache.get_user_session().mobile == MOBILE

    @pytest.mark.asyncio
    async def test_existing_matches_go_to_photos(self, otp_flow, mock_api, cache):
        """Test that matches returned with verification are shown and cached."""
        mock_api.verify_otp.return_value = VerifyOTPResponse.model_validate({
            "success": True,
            "verified": True,
            "token": "tok",
            "userId": "u1",
            "photos": [MATCH],
            "groupId": "g-1",
        })

        assert await otp_flow.verify_otp("1234") is True

        assert otp_flow.state.step == RegisteredStep.PHOTOS
        assert otp_flow.state.group_id == "g-1"
        assert cache.get_group_id() == "g-1"
        assert cache.get_user_data() == {"_id": "u1", "mobile": MOBILE}
        cached = cache.get_photos_cache(MOBILE, EVENT)
        assert cached["groupId"] == "g-1"
        assert cached["photos"][0]["compressed"] == MATCH["image"]


class TestMatch:
    """Test cases for the selfie step."""

    @pytest.fixture
    def selfie_flow(self, flow, cache):
        flow.state.mobile = MOBILE
        flow.state.user_id = "u1"
        flow.state.token = "tok"
        flow.state.step = RegisteredStep.SELFIE
        cache.set_auth_token("tok")
        cache.set_user_data({"_id": "u1"})
        return flow

    @pytest.mark.asyncio
    async def test_match_with_new_selfie(self, selfie_flow, mock_api, cache, selfie):
        """Test a successful match with a freshly uploaded selfie."""
        mock_api.match_registered.return_value = MatchResponse.model_validate({
            "success": True,
            "matched": True,
            "FaceMatches": [MATCH],
            "groupInfo": {"groupId": "g-7", "totalPhotos": 1},
        })
        assert await selfie_flow.select_selfie(selfie) is True

        assert await selfie_flow.match() is True

        assert selfie_flow.state.step == RegisteredStep.PHOTOS
        assert selfie_flow.state.group_id == "g-7"
        assert cache.get_matched_photos()[0]["_id"] == "m1"
        mock_api.match_registered.assert_awaited_once_with(
            f"+91{MOBILE}", EVENT, "u1", "tok", file=selfie_flow.state.selfie, force_refresh=False
        )

    @pytest.mark.asyncio
    async def test_match_reuses_stored_selfie(self, selfie_flow, mock_api, cache):
        """Test re-matching against the selfie the backend already holds."""
        cache.set_user_data({"_id": "u1", "awsKeyImage": "faces/u1.jpg"})
        mock_api.match_registered.return_value = MatchResponse.model_validate({
            "success": True,
            "matched": True,
            "FaceMatches": [MATCH],
            "groupId": "g-8",
        })

        assert await selfie_flow.match() is True

        assert selfie_flow.state.group_id == "g-8"
        kwargs = mock_api.match_registered.await_args.kwargs
        assert kwargs["file"] is None
        assert kwargs["force_refresh"] is True

    @pytest.mark.asyncio
    async def test_match_requires_a_selfie(self, selfie_flow, mock_api):
        """Test that matching without any selfie is refused."""
        assert await selfie_flow.match() is False

        assert selfie_flow.state.error == "Please upload a selfie first"
        mock_api.match_registered.assert_not_called()

    @pytest.mark.asyncio
    async def test_match_without_token_returns_to_login(self, selfie_flow, mock_api, selfie):
        """Test that a missing token sends the user back to the mobile step."""
        selfie_flow.state.token = None
        await selfie_flow.select_selfie(selfie)

        assert await selfie_flow.match() is False

        assert selfie_flow.state.step == RegisteredStep.MOBILE
        assert selfie_flow.state.error == "Authentication failed. Please try logging in again."

    @pytest.mark.asyncio
    async def test_no_match(self, selfie_flow, mock_api, selfie):
        """Test that a face without matches keeps the user on the selfie step."""
        mock_api.match_registered.return_value = MatchResponse(matched=False, message="")
        await selfie_flow.select_selfie(selfie)

        assert await selfie_flow.match() is False

        assert selfie_flow.state.step == RegisteredStep.SELFIE
        assert selfie_flow.state.error == "No matching photos found"


class TestSessionEnd:
    """Test cases for downloads and logout."""

    @pytest.mark.asyncio
    async def test_download_zip_without_group(self, flow, mock_api):
        """Test that downloading needs a matched group."""
        assert await flow.download_zip() is None

        assert flow.state.error == "No group ID available for download"
        mock_api.download_zip.assert_not_called()

    @pytest.mark.asyncio
    async def test_download_zip_failure(self, flow, mock_api):
        """Test that a failed archive is reported on the state."""
        flow.state.group_id = "g-1"
        mock_api.download_zip.side_effect = InstaSnapAPIError("Failed to generate ZIP", 500)

        assert await flow.download_zip() is None

        assert flow.state.error == "Failed to generate ZIP"
        assert flow.state.loading is False

    @pytest.mark.asyncio
    async def test_logout(self, flow, mock_api, cache):
        """Test that logout forgets the user but keeps the last number and group."""
        await flow.initialize()
        flow.state.mobile = MOBILE
        flow.state.step = RegisteredStep.PHOTOS
        cache.set_last_mobile(MOBILE)
        cache.set_group_id("g-1")
        cache.set_auth_token("tok")
        cache.set_user_data({"_id": "u1"})
        cache.set_photos_cache(MOBILE, EVENT, {"photos": [{"_id": "p1"}]})

        flow.logout()

        assert flow.state.step == RegisteredStep.MOBILE
        assert flow.state.mobile == MOBILE
        assert flow.state.permission is not None
        assert cache.is_authenticated() is False
        assert cache.get_photos_cache(MOBILE, EVENT) is None
        assert cache.get_group_id() == "g-1"

    @pytest.mark.asyncio
    async def test_contribute_requires_login(self, flow, mock_api, selfie):
        """Test that contributing needs a logged-in user."""
        assert await flow.contribute_photo(selfie) is False

        assert flow.state.error == "Please log in to contribute photos"
        mock_api.contribute_photo.assert_not_called()


def test_face_match_to_photo():
    """Test conversion of a face match to a gallery record."""
    photo = face_match_to_photo(FaceMatch.model_validate(MATCH))

    assert photo == {
        "_id": "m1",
        "image": MATCH["image"],
        "compressed": MATCH["image"],
        "thumbnail": MATCH["thumbnail"],
        "uploadDate": "2024-05-01",
    }
