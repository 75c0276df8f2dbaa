from __future__ import annotations

from typing import Optional
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import JSONResponse, RedirectResponse, Response

from taskgate.api.schemas import error_envelope
from taskgate.config import Settings
from taskgate.service.errors import AuthenticationError, ForbiddenError, ServiceError

_REDIRECT_METHODS = {"GET", "HEAD"}


def _media_quality(accept: str, media_type: str) -> Optional[float]:
    """Return the q-value the Accept header gives ``media_type``, or None."""
    for part in accept.split(","):
        fields = [f.strip() for f in part.split(";")]
        if fields[0].lower() != media_type:
            continue
        quality = 1.0
        for param in fields[1:]:
            name, _, value = param.partition("=")
            if name.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        return quality
    return None


def wants_redirect(request: Request) -> bool:
    """True for top-level browser navigations that should be sent to a login page."""
    if request.method.upper() not in _REDIRECT_METHODS:
        return False
    if request.headers.get("x-requested-with", "").lower() == "xmlhttprequest":
        return False
    accept = request.headers.get("accept", "")
    html_q = _media_quality(accept, "text/html")
    if not html_q:
        return False
    json_q = _media_quality(accept, "application/json")
    return json_q is None or html_q > json_q


def is_access_denial(exc: ServiceError) -> bool:
    return isinstance(exc, (AuthenticationError, ForbiddenError))


def render_denial(
    request: Request,
    exc: ServiceError,
    settings: Settings,
    *,
    stack: Optional[str] = None,
) -> Response:
    """Redirect browsers to the fallback page, answer API clients with JSON."""
    if wants_redirect(request):
        target = request.url.path
        if request.url.query:
            target = f"{target}?{request.url.query}"
        location = f"{settings.auth_fallback_path}?{urlencode({'next': target})}"
        return RedirectResponse(location, status_code=303)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_envelope(exc.message, stack=stack),
    )
