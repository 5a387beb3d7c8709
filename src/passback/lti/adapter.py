"""
PyLTI1p3 adapter for FastAPI/Starlette.

PyLTI1p3 is framework agnostic; it needs a request wrapper, a cookie
service, a redirect object and OIDCLogin/MessageLaunch subclasses wired to
them.  Launches happen inside an LMS iframe, so cookies are written with
``SameSite=None; Secure`` whenever the request arrived over HTTPS.
"""

from __future__ import annotations

from typing import Optional

from pylti1p3.cookie import CookieService
from pylti1p3.launch_data_storage.base import LaunchDataStorage
from pylti1p3.message_launch import MessageLaunch
from pylti1p3.oidc_login import OIDCLogin
from pylti1p3.redirect import Redirect
from pylti1p3.request import Request
from pylti1p3.session import SessionService
from starlette.requests import Request as StarletteRequest
from starlette.responses import HTMLResponse, RedirectResponse, Response


class LTIRequest(Request):
    """Request parameters and cookies as PyLTI1p3 expects to read them."""

    def __init__(
        self,
        params: Optional[dict] = None,
        cookies: Optional[dict] = None,
        secure: bool = True,
    ):
        super().__init__()
        self._params = params or {}
        self._cookies = cookies or {}
        self._secure = secure
        self._session: dict = {}

    @classmethod
    async def from_starlette(cls, request: StarletteRequest) -> LTIRequest:
        """Collect GET query or POST form params from an incoming request."""
        if request.method == "GET":
            params = dict(request.query_params)
        else:
            params = dict(await request.form())
        return cls(params=params, cookies=dict(request.cookies), secure=is_secure(request))

    @classmethod
    def detached(cls) -> LTIRequest:
        """Empty request used to restore a cached launch outside any HTTP call."""
        return cls()

    @property
    def session(self) -> dict:
        return self._session

    def get_param(self, key: str) -> Optional[str]:
        return self._params.get(key)

    def get_cookie(self, key: str) -> Optional[str]:
        return self._cookies.get(key)

    def is_secure(self) -> bool:
        return self._secure


def is_secure(request: StarletteRequest) -> bool:
    """HTTPS directly or behind a TLS-terminating proxy."""
    if request.url.scheme == "https":
        return True
    return request.headers.get("x-forwarded-proto", "") == "https"


class LTICookieService(CookieService):
    """Buffers cookies set during the LTI flow until a response exists."""

    def __init__(self, request: LTIRequest):
        self._request = request
        self._pending: dict[str, tuple[str, int]] = {}

    def _get_key(self, key: str) -> str:
        return f"{self._cookie_prefix}-{key}"

    def get_cookie(self, name: str) -> Optional[str]:
        return self._request.get_cookie(self._get_key(name))

    def set_cookie(self, name: str, value, exp: int = 3600):
        self._pending[self._get_key(name)] = (str(value), exp)

    def apply(self, response: Response) -> Response:
        secure = self._request.is_secure()
        for key, (value, max_age) in self._pending.items():
            response.set_cookie(
                key=key,
                value=value,
                max_age=max_age,
                path="/",
                httponly=True,
                secure=secure,
                samesite="none" if secure else "lax",
            )
        return response


class LTIRedirect(Redirect):
    """302 or JavaScript redirect carrying any buffered cookies."""

    def __init__(self, location: str, cookie_service: Optional[LTICookieService] = None):
        super().__init__()
        self._location = location
        self._cookie_service = cookie_service

    def _finish(self, response: Response) -> Response:
        if self._cookie_service is not None:
            self._cookie_service.apply(response)
        return response

    def do_redirect(self) -> Response:
        return self._finish(RedirectResponse(url=self._location, status_code=302))

    def do_js_redirect(self) -> Response:
        # Some browsers drop cookies set on a 302 inside a third-party iframe.
        html = (
            "<html><head></head><body>"
            f'<script type="text/javascript">window.location="{self._location}";</script>'
            "</body></html>"
        )
        return self._finish(HTMLResponse(content=html))

    def set_redirect_url(self, location: str):
        self._location = location

    def get_redirect_url(self) -> str:
        return self._location


class LTIOIDCLogin(OIDCLogin):
    """OIDC third-party initiated login."""

    def __init__(
        self,
        request: LTIRequest,
        tool_config,
        launch_data_storage: Optional[LaunchDataStorage] = None,
    ):
        super().__init__(
            request,
            tool_config,
            SessionService(request),
            LTICookieService(request),
            launch_data_storage,
        )

    def get_redirect(self, url: str) -> LTIRedirect:
        return LTIRedirect(url, self._cookie_service)

    def get_response(self, html: str) -> HTMLResponse:
        return HTMLResponse(content=html)


class LTIMessageLaunch(MessageLaunch):
    """id_token validation and access to launch claims and AGS."""

    def __init__(
        self,
        request: LTIRequest,
        tool_config,
        session_service=None,
        cookie_service=None,
        launch_data_storage: Optional[LaunchDataStorage] = None,
        requests_session=None,
    ):
        super().__init__(
            request,
            tool_config,
            session_service or SessionService(request),
            cookie_service or LTICookieService(request),
            launch_data_storage,
            requests_session,
        )

    def _get_request_param(self, key: str) -> Optional[str]:
        return self._request.get_param(key)
