from __future__ import annotations

from dataclasses import asdict
from typing import Any, Dict, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from pydantic import BaseModel

from reelscore.api.schemas import (
    Envelope,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    UpdateUserRequest,
    UserResponse,
    validate_payload,
)
from reelscore.logging import get_logger
from reelscore.service.auth import REFRESH_TOKEN_TTL
from reelscore.service.errors import AuthenticationError, ForbiddenError, ValidationError
from reelscore.service.runtime import get_runtime
from reelscore.storage.models import Role, TokenPair, User

logger = get_logger(__name__)

router = APIRouter()

REFRESH_COOKIE = "refreshToken"
REGISTRATION_NOTICE = (
    "To complete the registration, please verify your email address.\n"
    "A verification email has been sent to your inbox; follow the instructions "
    "provided in the email.\n"
    "If you do not verify your email within 24 hours, your account will be deleted!"
)

ModelT = TypeVar("ModelT", bound=BaseModel)


async def _read_json(request: Request) -> Any:
    body = await request.body()
    if not body:
        return None
    try:
        return await request.json()
    except ValueError:
        raise ValidationError(
            "request body must be valid JSON",
            detail={"errors": [{"field": "body", "message": "invalid JSON"}]},
        )


async def _validated(request: Request, model: Type[ModelT]) -> ModelT:
    result = validate_payload(model, await _read_json(request))
    if not result.ok:
        raise ValidationError(
            "request validation failed",
            detail={"errors": [asdict(error) for error in result.errors]},
        )
    return result.value


def _set_refresh_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        token,
        httponly=True,
        secure=get_runtime().settings.cookie_secure,
        samesite="strict",
        max_age=int(REFRESH_TOKEN_TTL.total_seconds()),
        path="/",
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        REFRESH_COOKIE,
        path="/",
        secure=get_runtime().settings.cookie_secure,
        httponly=True,
        samesite="strict",
    )


def _token_envelope(response: Response, pair: TokenPair) -> Envelope:
    _set_refresh_cookie(response, pair.refresh_token)
    return Envelope(status="ok", data=TokenResponse(access_token=pair.access_token))


def _user_response(user: User) -> UserResponse:
    return UserResponse(**user.public_view())


async def _presented_refresh_token(request: Request) -> str:
    token = request.cookies.get(REFRESH_COOKIE)
    if token:
        return token
    payload = await _read_json(request)
    if payload is None:
        raise AuthenticationError("Refresh token is required")
    result = validate_payload(RefreshRequest, payload)
    if not result.ok:
        raise AuthenticationError("Refresh token is required")
    return result.value.refresh_token


async def get_principal(authorization: Optional[str] = Header(None)) -> Dict[str, Any]:
    """Resolve the bearer access token into its claims."""
    scheme, _, credentials = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not credentials.strip():
        raise AuthenticationError("Unauthorized")
    claims = get_runtime().issuer.decode_access(credentials.strip())
    if not claims:
        raise AuthenticationError("Unauthorized")
    return claims


async def get_admin_principal(
    claims: Dict[str, Any] = Depends(get_principal),
) -> Dict[str, Any]:
    if claims.get("role") != Role.ADMIN.value:
        raise ForbiddenError("Forbidden resource")
    return claims


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(request: Request, response: Response):
    """Create an account, open its first session and queue the confirmation email."""
    body = await _validated(request, RegisterRequest)
    pair = (
        await get_runtime().auth.register(body.username, body.email, body.password)
    ).unwrap()
    _set_refresh_cookie(response, pair.refresh_token)
    return Envelope(
        status="ok",
        data=RegisterResponse(
            tokens=TokenResponse(access_token=pair.access_token),
            message=REGISTRATION_NOTICE,
        ),
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(request: Request, response: Response):
    body = await _validated(request, LoginRequest)
    pair = (await get_runtime().auth.login(body.username, body.password)).unwrap()
    return _token_envelope(response, pair)


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(request: Request, response: Response):
    """Rotate the presented refresh token (cookie first, then JSON body)."""
    presented = await _presented_refresh_token(request)
    pair = (await get_runtime().auth.refresh(presented)).unwrap()
    return _token_envelope(response, pair)


@router.post("/auth/logout", status_code=204, tags=["auth"])
async def logout(request: Request):
    presented = await _presented_refresh_token(request)
    (await get_runtime().auth.logout(presented)).unwrap()
    response = Response(status_code=204)
    _clear_refresh_cookie(response)
    return response


@router.post("/auth/verify", response_model=Envelope, tags=["auth"])
async def verify_email(token: str = Query(..., min_length=1, max_length=512)):
    result = (await get_runtime().auth.verify_email(token)).unwrap()
    return Envelope(status="ok", data=result)


@router.get("/users/{username}", response_model=Envelope, tags=["users"])
async def get_user_profile(username: str):
    user = (await get_runtime().users.get_profile(username)).unwrap()
    return Envelope(status="ok", data=_user_response(user))


async def _update_user(username: str, request: Request) -> Envelope:
    body = await _validated(request, UpdateUserRequest)
    user = (
        await get_runtime().users.update_profile(
            username,
            new_username=body.username,
            email=body.email,
            password=body.password,
        )
    ).unwrap()
    return Envelope(status="ok", data=_user_response(user))


@router.patch("/users/me", response_model=Envelope, tags=["users"])
async def update_own_profile(
    request: Request, claims: Dict[str, Any] = Depends(get_principal)
):
    return await _update_user(claims["username"], request)


@router.delete("/users/me", response_model=Envelope, tags=["users"])
async def delete_own_profile(claims: Dict[str, Any] = Depends(get_principal)):
    result = (await get_runtime().users.delete_account(claims["username"])).unwrap()
    return Envelope(status="ok", data=result)


@router.patch("/users/{username}", response_model=Envelope, tags=["admin"])
async def admin_update_profile(
    username: str,
    request: Request,
    claims: Dict[str, Any] = Depends(get_admin_principal),
):
    logger.info("admin_user_update", target=username, admin=claims.get("username"))
    return await _update_user(username, request)


@router.delete("/users/{username}", response_model=Envelope, tags=["admin"])
async def admin_delete_profile(
    username: str, claims: Dict[str, Any] = Depends(get_admin_principal)
):
    logger.info("admin_user_delete", target=username, admin=claims.get("username"))
    result = (await get_runtime().users.delete_account(username)).unwrap()
    return Envelope(status="ok", data=result)
