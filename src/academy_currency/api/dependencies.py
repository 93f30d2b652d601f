"""Request-scoped dependencies: the caller's session and the conversion body."""

from typing import Annotated, Any

from fastapi import Depends, Request

from academy_currency.api.schemas import ConvertCurrencyRequest
from academy_currency.container import get_session_service
from academy_currency.domain.conversions import ConversionContext
from academy_currency.exceptions import AuthenticationError
from academy_currency.logging_config import bind_context
from academy_currency.services.session import SessionTokenService, context_from_claims

SESSION_COOKIE = "session"


def _session_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials.strip():
        return credentials.strip()
    return None


def client_ip(request: Request) -> str | None:
    """First hop of X-Forwarded-For, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def get_conversion_context(
    request: Request,
    sessions: Annotated[SessionTokenService, Depends(get_session_service)],
) -> ConversionContext:
    """Build the caller's ConversionContext or fail with 401."""
    token = _session_token(request)
    if token is None:
        raise AuthenticationError()
    claims = sessions.verify(token)
    if claims is None or not (claims.tenant_id and claims.sub and claims.role):
        raise AuthenticationError()
    bind_context(tenant_id=claims.tenant_id, user_id=claims.sub)
    return context_from_claims(
        claims,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )


CurrentContext = Annotated[ConversionContext, Depends(get_conversion_context)]


def _currency_field(value: Any) -> str | None:
    if value is None or isinstance(value, str):
        return value
    return str(value)


async def get_convert_request(request: Request) -> ConvertCurrencyRequest:
    """Read the conversion body without FastAPI's 422 validation.

    Unreadable or non-object bodies carry no currencies, and non-string values
    are passed on as text, so the service answers with its own 400 errors.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None
    if not isinstance(body, dict):
        body = {}
    return ConvertCurrencyRequest.model_validate(
        {key: _currency_field(value) for key, value in body.items()}
    )


CurrencyPair = Annotated[ConvertCurrencyRequest, Depends(get_convert_request)]
