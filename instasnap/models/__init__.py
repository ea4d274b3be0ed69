"""Data models for the InstaSnap client."""

from .api_models import (
    AnonymousMatchResponse,
    AnonymousPhoto,
    ClusteringStatsResponse,
    ContributeResponse,
    EventPhoto,
    EventPhotosResponse,
    FaceMatch,
    MatchResponse,
    OTPResponse,
    PeopleResponse,
    Person,
    PersonPhotosResponse,
    PhotoPermission,
    PhotoPermissionResponse,
    RegisterResponse,
    UserMatchesResponse,
    VerifyOTPResponse,
)
from .internal_models import (
    RegisterFormData,
    UploadFile,
    UserSession,
)

__all__ = [
    "AnonymousMatchResponse",
    "AnonymousPhoto",
    "ClusteringStatsResponse",
    "ContributeResponse",
    "EventPhoto",
    "EventPhotosResponse",
    "FaceMatch",
    "MatchResponse",
    "OTPResponse",
    "PeopleResponse",
    "Person",
    "PersonPhotosResponse",
    "PhotoPermission",
    "PhotoPermissionResponse",
    "RegisterResponse",
    "UserMatchesResponse",
    "VerifyOTPResponse",
    "RegisterFormData",
    "UploadFile",
    "UserSession",
]
