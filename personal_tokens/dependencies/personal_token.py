# personal_tokens/dependencies/personal_token.py
from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.formparsers import MultiPartException

from personal_tokens.core.database import get_db
from personal_tokens.models.personal_token import PersonalToken
from personal_tokens.services.token_config import TokenConfig
from personal_tokens.services.token_validator import TokenValidator

logger = logging.getLogger(__name__)

INVALID_TOKEN_MESSAGE = "Invalid or expired personal token."
TOKEN_FIELD = "token"

_FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


def _unauthorized() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=INVALID_TOKEN_MESSAGE)


async def read_token_field(request: Request) -> Any:
    """
    Body first, then query string (body wins when both carry the field).
    Returns whatever was sent; callers must type-check.
    """
    content_type = request.headers.get("content-type", "").lower()

    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and TOKEN_FIELD in body:
            return body[TOKEN_FIELD]
    elif content_type.startswith(_FORM_CONTENT_TYPES):
        try:
            form = await request.form()
        except (StarletteHTTPException, MultiPartException):
            # Unparseable form body: treat the field as absent.
            logger.debug("Personal token form body could not be parsed path=%s", request.url.path)
            return None
        if TOKEN_FIELD in form:
            return form[TOKEN_FIELD]

    return request.query_params.get(TOKEN_FIELD)


def require_personal_token(
    type: Any = None,
    *,
    config: TokenConfig | None = None,
) -> Callable[..., Awaitable[PersonalToken]]:
    """
    FastAPI dependency factory.

    Usage:
        @router.post("/invites/accept")
        def accept(token: PersonalToken = Depends(require_personal_token("invite_user"))):
            ...

    Rejects with 401 "Invalid or expired personal token." when the `token` field is
    missing, not a string, or fails validation. On success the record is also
    available as request.state.personal_token. The token is NOT consumed here.
    """

    async def dependency(request: Request, db: Session = Depends(get_db)) -> PersonalToken:
        raw = await read_token_field(request)
        if not isinstance(raw, str):
            logger.info("Personal token rejected: missing or non-string field path=%s", request.url.path)
            raise _unauthorized()

        # Session I/O and the hash check are blocking; keep them off the event loop.
        validator = TokenValidator.for_session(db, config=config)
        record = await run_in_threadpool(validator.validate, raw, type)
        if record is None:
            logger.info("Personal token rejected path=%s", request.url.path)
            raise _unauthorized()

        request.state.personal_token = record
        return record

    return dependency
