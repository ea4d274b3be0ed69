"""Internal data models for the InstaSnap client."""

import mimetypes
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Union


@dataclass
class UploadFile:
    """In-memory image upload (selfie or contributed photo)."""

    name: str
    content: bytes
    content_type: str = "application/octet-stream"

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "UploadFile":
        """Read a file from disk, guessing its mime type from the extension."""
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            name=path.name,
            content=path.read_bytes(),
            content_type=content_type or "application/octet-stream"
        )

    def as_httpx_file(self):
        """Tuple form accepted by httpx's ``files=`` argument."""
        return (self.name, self.content, self.content_type)


@dataclass
class UserSession:
    """Marks a phone number as OTP-verified for one event."""

    mobile: str
    event_id: str
    is_verified: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mobile": self.mobile,
            "eventId": self.event_id,
            "isVerified": self.is_verified
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserSession":
        return cls(
            mobile=str(data["mobile"]),
            event_id=str(data["eventId"]),
            is_verified=bool(data["isVerified"])
        )


@dataclass
class RegisterFormData:
    """Fields submitted by the self-registration form."""

    first_name: str
    mobile: str
    email_id: str
    event_id: str
    phone_code: str
    selfie: UploadFile
