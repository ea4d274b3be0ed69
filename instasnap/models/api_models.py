"""Pydantic models for InstaSnap API responses."""

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class BackendModel(BaseModel):
    """Base for backend payloads: keeps unknown fields and accepts ``_id``."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def to_cache(self) -> Dict:
        """JSON-compatible dict using the backend field names."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class OTPResponse(BackendModel):
    """Response model for the send-OTP endpoint."""

    message: str = ""
    otp: Optional[Union[str, int]] = None


class VerifiedUser(BackendModel):
    """Profile returned after OTP verification."""

    id: str = Field(..., alias="_id")
    firstName: Optional[str] = None
    fullName: Optional[str] = None
    authenticationId: Optional[str] = None
    emailId: Optional[str] = None
    phoneCode: Optional[str] = None
    event: Optional[str] = None
    awsKeyImage: Optional[str] = None
    formattedTicketNumber: Optional[str] = None


class FaceMatch(BackendModel):
    """One photo matched against a registered user's face."""

    id: str = Field(..., alias="_id")
    imageId: Optional[str] = None
    image: str
    thumbnail: str
    matchDate: Optional[str] = None
    event: Optional[str] = None
    user: Optional[str] = None
    mobile: Optional[str] = None
    name: Optional[str] = None


class VerifyOTPResponse(BackendModel):
    """Response model for OTP verification.

    ``verified`` is the flag callers branch on; a wrong OTP is reported
    here rather than raised.
    """

    success: bool = False
    message: str = ""
    verified: bool = False
    token: Optional[str] = None
    refreshToken: Optional[str] = None
    userId: Optional[str] = None
    user: Optional[VerifiedUser] = None
    mobile: Optional[str] = None
    requiresSelfie: bool = False
    photos: Optional[List[FaceMatch]] = None
    groupId: Optional[str] = None
    error: Optional[str] = None


class GroupInfo(BackendModel):
    """Face cluster the registered user was linked to."""

    groupId: str
    totalPhotos: int = 0
    similarity: Optional[float] = None
    linked: bool = False


class EventPhoto(BackendModel):
    """Photo record as stored for an event."""

    id: str = Field(..., alias="_id")
    image: str
    compressed: str
    thumbnail: str
    uploadDate: Optional[str] = None
    event: Optional[str] = None
    isHighlight: Optional[bool] = None
    uploadedSize: Optional[Union[str, int]] = None
    compressedSize: Optional[Union[str, int]] = None


class MatchResponse(BackendModel):
    """Response model for registered-user matching."""

    success: bool = False
    message: str = ""
    matched: bool = False
    FaceMatches: List[FaceMatch] = Field(default_factory=list)
    groupInfo: Optional[GroupInfo] = None
    processingTime: Optional[Union[str, float]] = None
    photos: Optional[List[EventPhoto]] = None
    groupId: Optional[str] = None
    error: Optional[str] = None


class AnonymousPhoto(BackendModel):
    """Anonymous match result using client-side field names."""

    imageId: str
    originalUrl: str
    compressedUrl: str
    thumbnailUrl: str
    uploadDate: Optional[str] = None


class AnonymousMatchResponse(BackendModel):
    """Response model for anonymous (selfie only) matching."""

    success: bool = False
    message: str = ""
    matched: bool = False
    groupId: Optional[str] = None
    similarity: Optional[float] = None
    photos: List[AnonymousPhoto] = Field(default_factory=list)
    processingTime: Optional[Union[str, float]] = None


class RegisterResponse(BackendModel):
    """Response model for self-registration."""

    success: bool = False
    message: str = ""
    error: Optional[str] = None


class EventPhotosResponse(BackendModel):
    """Paginated list of event photos (wall of fame, highlights, all photos)."""

    success: bool = False
    message: str = ""
    response: List[EventPhoto] = Field(default_factory=list)
    count: int = 0
    totalCount: int = 0
    filterCount: int = 0


class EventRef(BackendModel):
    id: str = Field(..., alias="_id")
    value: Optional[str] = None


class PhotoPermission(BackendModel):
    """Event-level access configuration."""

    id: Optional[str] = Field(None, alias="_id")
    # Everyone, Attendees, RegisteredOnly, Private or Public
    photoViewAccess: Optional[str] = None
    enableSocialShare: bool = False
    enablePartnerSpotlights: bool = False
    enableEventHighlights: bool = False
    isWhatsappAuth: bool = False
    event: Optional[EventRef] = None


class PhotoPermissionResponse(BackendModel):
    success: bool = False
    message: str = ""
    response: List[PhotoPermission] = Field(default_factory=list)
    count: int = 0
    totalCount: int = 0
    filterCount: int = 0


class ClusteringStats(BackendModel):
    totalGroups: int = 0
    totalFaceDetections: int = 0
    averageFacesPerGroup: float = 0.0
    clientMatchedGroups: int = 0
    unmatchedGroups: int = 0
    largestGroupSize: int = 0
    smallestGroupSize: int = 0
    groupSizeDistribution: Dict[str, int] = Field(default_factory=dict)


class ClusteringStatsResponse(BackendModel):
    success: bool = False
    eventId: Optional[str] = None
    statistics: Optional[ClusteringStats] = None


class Person(BackendModel):
    """A face cluster discovered in the event's photos."""

    id: Optional[str] = Field(None, alias="_id")
    groupId: str
    representativeFace: str = ""
    matchCount: int = 0
    qualityScore: float = 0.0
    eventImages: List[str] = Field(default_factory=list)


class PeopleResponse(BackendModel):
    success: bool = False
    people: List[Person] = Field(default_factory=list)
    totalPeople: int = 0


class PersonPhotosResponse(BackendModel):
    success: bool = False
    groupId: Optional[str] = None
    photos: List[EventPhoto] = Field(default_factory=list)
    totalPhotos: int = 0


class UserMatchesResponse(BackendModel):
    success: bool = False
    matches: List[FaceMatch] = Field(default_factory=list)
    count: int = 0


class ContributeResponse(BackendModel):
    success: bool = False
    message: str = ""
    error: Optional[str] = None
