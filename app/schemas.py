from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RegisterRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=50, examples=["alice"], description="Unique login name")
    email: str = Field(..., min_length=3, max_length=255, examples=["alice@example.com"], description="Unique email")
    password: str = Field(..., min_length=1, examples=["s3cret"], description="Plain password, hashed before storage")


class LoginRequest(BaseModel):
    username: str = Field(..., min_length=1, examples=["alice"])
    password: str = Field(..., min_length=1, examples=["s3cret"])


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., examples=[1], description="User identification number")
    username: str = Field(..., examples=["alice"])
    email: str = Field(..., examples=["alice@example.com"])


class FileDescriptor(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., examples=[1], description="File identification number")
    user_id: int = Field(..., examples=[1], description="Owner of the file")
    original_name: str = Field(..., examples=["report.pdf"], description="File name provided by the user")
    storage_name: str = Field(
        ..., examples=["files-1760788800000000000-3f9a1c2b7d4e.pdf"], description="Name the file is stored under"
    )
    size: int = Field(..., examples=[4005], description="File size in bytes")
    mime_type: str = Field(..., examples=["application/pdf"])
    content_hash: Optional[str] = Field(
        None, examples=["5d41402abc4b2a76b9719d911017c592"], description="MD5 of the stored bytes"
    )
    uploaded_at: datetime = Field(..., examples=["2025-09-03T12:34:56Z"], description="Time of the upload")

    @field_validator("uploaded_at")
    @classmethod
    def assume_utc(cls, value: datetime) -> datetime:
        # SQLite hands datetimes back naive; they were written as UTC
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class VerifyResponse(BaseModel):
    storage_name: str
    recorded_hash: Optional[str]
    actual_hash: str
    verified: Optional[bool] = Field(None, description="None when the file was stored without a hash")


class ErrorResponse(BaseModel):
    detail: str = Field(..., examples=["File not found"])
    code: str = Field(..., examples=["not_found"])
