from __future__ import annotations

import html
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, Response
from fastapi.responses import HTMLResponse

from talenthub.api.schemas import (
    AuthTokensResponse,
    Envelope,
    LoginRequest,
    LogoutRequest,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    TokenPairResponse,
    TokenRefreshRequest,
    TwoFactorChallengeResponse,
    TwoFactorVerifyRequest,
    UserResponse,
)
from talenthub.service.auth import AuthContext
from talenthub.service.errors import AuthenticationError, NotFoundError
from talenthub.service.results import (
    AuthFailure,
    Authenticated,
    FailureKind,
    TwoFactorRequired,
)
from talenthub.service.runtime import get_runtime
from talenthub.storage.models import PublicUser

router = APIRouter(prefix="/api/v1")

_FAILURE_STATUS = {
    FailureKind.VALIDATION: (400, "validation_error"),
    FailureKind.CONFLICT: (400, "conflict"),
    FailureKind.AUTHENTICATION: (401, "unauthorized"),
    FailureKind.NOT_FOUND: (404, "not_found"),
    FailureKind.UNEXPECTED: (500, "server_error"),
}


def _http_error(
    code: str, message: str, status_code: int, details: Optional[dict | str] = None
) -> HTTPException:
    payload: dict[str, object] = {
        "status": "error",
        "error": {"code": code, "message": message},
    }
    if details is not None:
        payload["error"]["details"] = details  # type: ignore[index]
    return HTTPException(status_code=status_code, detail=payload)


def _failure_error(
    failure: AuthFailure, *, status_override: Optional[int] = None
) -> HTTPException:
    status_code, code = _FAILURE_STATUS[failure.kind]
    if status_override is not None:
        status_code = status_override
        code = "validation_error" if status_override == 400 else code
    return _http_error(code, failure.message, status_code, failure.details or None)


def _user_response(user: PublicUser) -> UserResponse:
    return UserResponse(**user.to_dict())


def _client_meta(request: Request) -> tuple[Optional[str], Optional[str]]:
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_user(
    authorization: Optional[str] = Header(None),
) -> AuthContext:
    token = _bearer_token(authorization)
    if not token:
        raise AuthenticationError("Authentication required")
    ctx = await get_runtime().auth.authenticate(token)
    if not ctx:
        raise AuthenticationError("Invalid or expired token")
    return ctx


def _authenticated_envelope(result: Authenticated) -> Envelope:
    return Envelope(
        status="ok",
        data=AuthTokensResponse(
            user=_user_response(result.user),
            accessToken=result.access_token,
            refreshToken=result.refresh_token,
            message=result.message,
        ),
    )


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create a candidate, employer or admin account and send the verification email.

    Raises:
        400: Field validation failed or the email is already registered
    """
    result = await get_runtime().auth.register(
        body.name,
        body.email,
        body.password,
        role=body.role.value if body.role else None,
        phone=body.phone,
    )
    if isinstance(result, AuthFailure):
        raise _failure_error(result)
    return Envelope(
        status="ok",
        data=RegisterResponse(userId=result.user_id, message=result.message),
    )


@router.get("/auth/verify-email", response_model=Envelope, tags=["auth"])
async def verify_email(token: str = Query(..., min_length=1)):
    """Confirm an email address; enables two-factor login for the account."""
    result = await get_runtime().auth.verify_email(token)
    if isinstance(result, AuthFailure):
        override = 400 if result.kind == FailureKind.AUTHENTICATION else None
        raise _failure_error(result, status_override=override)
    return Envelope(status="ok", data=MessageResponse(message=result.message))


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, request: Request, response: Response):
    """Authenticate with email and password.

    Returns the token pair directly, or 202 with ``requiresTwoFactor`` when the
    account has two-factor enabled and a code has been emailed.

    Raises:
        401: If credentials are invalid
    """
    ip_address, user_agent = _client_meta(request)
    result = await get_runtime().auth.login(
        body.email, body.password, ip_address=ip_address, user_agent=user_agent
    )
    if isinstance(result, AuthFailure):
        raise _failure_error(result)
    if isinstance(result, TwoFactorRequired):
        response.status_code = 202
        return Envelope(
            status="ok",
            data=TwoFactorChallengeResponse(
                email=result.email,
                user=_user_response(result.user),
                message=result.message,
            ),
        )
    return _authenticated_envelope(result)


@router.post("/auth/verify-2fa", response_model=Envelope, tags=["auth"])
async def verify_two_factor(body: TwoFactorVerifyRequest, request: Request):
    """Exchange an emailed one-time code for a token pair."""
    ip_address, user_agent = _client_meta(request)
    result = await get_runtime().auth.verify_two_factor(
        body.email, body.code, ip_address=ip_address, user_agent=user_agent
    )
    if isinstance(result, AuthFailure):
        raise _failure_error(result)
    return _authenticated_envelope(result)


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh_tokens(body: TokenRefreshRequest):
    """Rotate a refresh token: the presented token is revoked and a new pair issued."""
    result = await get_runtime().auth.refresh(body.refresh_token)
    if isinstance(result, AuthFailure):
        raise _failure_error(result)
    return Envelope(
        status="ok",
        data=TokenPairResponse(
            accessToken=result.access_token,
            refreshToken=result.refresh_token,
            message=result.message,
        ),
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(body: LogoutRequest, principal: AuthContext = Depends(get_current_user)):
    """Revoke the caller's refresh token. Unknown, revoked or foreign tokens succeed."""
    result = await get_runtime().auth.logout(
        body.refresh_token, user_id=principal.user_id
    )
    if isinstance(result, AuthFailure):
        raise _failure_error(result)
    return Envelope(status="ok", data=MessageResponse(message=result.message))


@router.get("/auth/me", response_model=Envelope, tags=["auth"])
async def me(principal: AuthContext = Depends(get_current_user)):
    user = await get_runtime().auth.get_user(principal.user_id)
    if not user:
        raise NotFoundError("User not found")
    return Envelope(status="ok", data=_user_response(user.to_public()))


_PAGE_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; max-width: 800px; margin: 0 auto; padding: 20px; }
    .container { border: 1px solid #ddd; border-radius: 5px; padding: 20px; margin-top: 20px; }
    .token-display { background: #f4f4f4; padding: 10px; border-radius: 3px; word-break: break-all; }
    .button { display: inline-block; background: #4CAF50; color: white; padding: 10px 20px; margin: 20px 0; border-radius: 5px; text-decoration: none; }
    .success { background: #dff0d8; color: #3c763d; padding: 10px; }
    .error { background: #f2dede; color: #a94442; padding: 10px; }
"""


def _page(title: str, body: str, status_code: int = 200) -> HTMLResponse:
    content = (
        "<!DOCTYPE html><html><head>"
        f"<title>{html.escape(title)}</title><style>{_PAGE_STYLE}</style>"
        f"</head><body><h1>{html.escape(title)}</h1>"
        f'<div class="container">{body}</div></body></html>'
    )
    return HTMLResponse(content=content, status_code=status_code)


def _missing_token_page() -> HTMLResponse:
    return _page(
        "Email Verification Error",
        '<div class="error"><p>Verification token is required</p></div>',
        status_code=400,
    )


@router.get("/email-test/show-verification", response_class=HTMLResponse, tags=["email-test"])
async def show_verification(token: Optional[str] = Query(None)):
    """Render the verification token with a link that completes verification."""
    if not token:
        return _missing_token_page()
    safe_token = html.escape(token, quote=True)
    body = (
        "<h2>Token Information</h2>"
        "<p>The following token was received from your email:</p>"
        f'<div class="token-display">{safe_token}</div>'
        "<h2>Verify Email</h2>"
        f'<a class="button" href="{router.prefix}/email-test/process-verification?token={safe_token}">Verify Email</a>'
        "<p>Alternatively, you can use the API endpoint:</p>"
        f"<code>GET {router.prefix}/auth/verify-email?token={safe_token}</code>"
    )
    return _page("Email Verification Test", body)


@router.get("/email-test/process-verification", response_class=HTMLResponse, tags=["email-test"])
async def process_verification(token: Optional[str] = Query(None)):
    """Run email verification and render the outcome as a page."""
    if not token:
        return _missing_token_page()
    result = await get_runtime().auth.verify_email(token)
    outcome = "Success" if result.success else "Error"
    css = "success" if result.success else "error"
    body = (
        f'<div class="{css}"><h2>{outcome}</h2>'
        f"<p>{html.escape(result.message)}</p></div>"
    )
    return _page(f"Email Verification {outcome}", body, status_code=200 if result.success else 400)
