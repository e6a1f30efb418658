from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from dataclasses import field as dataclass_field
from typing import Any, Generic, List, Optional, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

MAX_USERNAME_LENGTH = 50
MAX_EMAIL_LENGTH = 50
MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 20

ModelT = TypeVar("ModelT", bound=BaseModel)


def _normalize_unicode(value: str) -> str:
    """NFKC-normalize and strip zero-width and control characters."""
    cleaned = "".join(
        ch
        for ch in value
        if unicodedata.category(ch) not in ("Cf", "Cc") or ch in ("\n", "\t")
    )
    return unicodedata.normalize("NFKC", cleaned)


_VALID_ERROR_CODES = frozenset({
    "unauthorized",
    "forbidden",
    "not_found",
    "validation_error",
    "conflict",
    "server_error",
})


class ErrorBody(BaseModel):
    """Error envelope body with stable code values."""

    code: str
    message: str
    details: Optional[Any] = None  # object, array, or null

    @field_validator("code")
    @classmethod
    def _validate_error_code(cls, value: str) -> str:
        if value not in _VALID_ERROR_CODES:
            raise ValueError(
                f"Invalid error code '{value}'. Must be one of: {', '.join(sorted(_VALID_ERROR_CODES))}"
            )
        return value


class Envelope(BaseModel):
    status: str = Field(..., pattern="^(ok|error)$")
    data: Optional[Any] = None
    error: Optional[ErrorBody] = None
    request_id: str = Field(default_factory=lambda: str(uuid4()))


_EMAIL_LOCAL_PART = re.compile(r"^[a-zA-Z0-9.!#$%&'*+/=?^_`{|}~-]+$")
_EMAIL_DOMAIN_LABEL = re.compile(r"^[a-zA-Z0-9](?:[a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?$")


def _validate_email(value: str) -> str:
    normalized = _normalize_unicode(value.strip().lower())
    if not normalized:
        raise ValueError("email should not be empty")
    if len(normalized) > MAX_EMAIL_LENGTH:
        raise ValueError(f"email must be at most {MAX_EMAIL_LENGTH} characters")
    local, sep, domain = normalized.partition("@")
    if not sep or not local or not domain:
        raise ValueError("invalid email address")
    if not _EMAIL_LOCAL_PART.match(local):
        raise ValueError("invalid email address format")
    domain_parts = domain.split(".")
    if len(domain_parts) < 2:
        raise ValueError("invalid email address format")
    for label in domain_parts:
        if len(label) > 63 or not _EMAIL_DOMAIN_LABEL.match(label):
            raise ValueError("invalid email address format")
    return normalized


def _validate_username(value: str) -> str:
    normalized = _normalize_unicode(value.strip())
    if not normalized:
        raise ValueError("username should not be empty")
    if len(normalized) > MAX_USERNAME_LENGTH:
        raise ValueError(f"username must be at most {MAX_USERNAME_LENGTH} characters")
    return normalized


def _validate_password_length(value: str) -> str:
    if not MIN_PASSWORD_LENGTH <= len(value) <= MAX_PASSWORD_LENGTH:
        raise ValueError(
            f"password must be between {MIN_PASSWORD_LENGTH} and {MAX_PASSWORD_LENGTH} characters"
        )
    return value


class RegisterRequest(BaseModel):
    username: str
    email: str
    password: str

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        return _validate_username(value)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: str) -> str:
        return _validate_email(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password_length(value)


class LoginRequest(BaseModel):
    username: str
    password: str

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: str) -> str:
        return _validate_username(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: str) -> str:
        return _validate_password_length(value)


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1, max_length=2048)


class UpdateUserRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None

    @field_validator("username")
    @classmethod
    def _check_username(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _validate_username(value)

    @field_validator("email")
    @classmethod
    def _check_email(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _validate_email(value)

    @field_validator("password")
    @classmethod
    def _check_password(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _validate_password_length(value)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class RegisterResponse(BaseModel):
    tokens: TokenResponse
    message: str


class UserResponse(BaseModel):
    id: str
    username: str
    email: str
    role: str
    verified: bool
    created_at: str


@dataclass
class FieldError:
    field: str
    message: str


@dataclass
class ValidationResult(Generic[ModelT]):
    value: Optional[ModelT] = None
    errors: List[FieldError] = dataclass_field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def validate_payload(model: Type[ModelT], payload: Any) -> ValidationResult[ModelT]:
    """Validate a raw request body into ``model`` without raising."""
    try:
        value = model.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [
            FieldError(
                field=".".join(str(part) for part in err.get("loc", ())) or "body",
                message=err.get("msg", "invalid value"),
            )
            for err in exc.errors()
        ]
        return ValidationResult(errors=errors)
    return ValidationResult(value=value)
