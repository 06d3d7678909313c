"""
CSRF token sources for Interparcel quoting.

Interparcel's per-service quote endpoint only answers requests that carry the
CSRF token and session cookie issued with its public quote page. The token
source sits behind TokenProvider so a documented API credential can replace
page scraping, and so tests can inject a fixed token.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional, Protocol, runtime_checkable

import httpx
from bs4 import BeautifulSoup

from partedeuro.core.config import settings
from partedeuro.core.exceptions import CsrfTokenUnavailable

logger = logging.getLogger(__name__)

SESSION_COOKIE_NAME = "PHPSESSID"


@dataclass(frozen=True)
class QuoteSession:
    csrf_token: str
    session_cookie: str

    def headers(self) -> Dict[str, str]:
        return {
            "Cookie": f"{SESSION_COOKIE_NAME}={self.session_cookie}",
            "x-csrf-token": self.csrf_token,
        }


@runtime_checkable
class TokenProvider(Protocol):
    """Source of a quote session for one quote flow."""

    async def get_session(self, page_params: Dict[str, str]) -> QuoteSession:
        ...


def extract_csrf_token(html: str) -> Optional[str]:
    """Read <meta name="csrf-token" content="..."> from a page."""
    soup = BeautifulSoup(html, "html.parser")
    meta = soup.find("meta", attrs={"name": "csrf-token"})
    if meta is None:
        return None
    token = (meta.get("content") or "").strip()
    return token or None


class QuotePageTokenProvider:
    """
    Scrapes a fresh token from the quote page on every call.

    Nothing is cached: concurrent quote flows never share session state.
    """

    def __init__(self, http_client: httpx.AsyncClient, page_url: Optional[str] = None):
        self.http_client = http_client
        self.page_url = page_url or f"{settings.INTERPARCEL_BASE_URL.rstrip('/')}/quote/select-service"

    async def get_session(self, page_params: Dict[str, str]) -> QuoteSession:
        try:
            response = await self.http_client.get(
                self.page_url,
                params=page_params,
                headers={"Accept": "text/html"},
            )
        except httpx.HTTPError as e:
            raise CsrfTokenUnavailable(
                f"Failed to load Interparcel quote page: {e}", carrier="interparcel"
            ) from e

        token = extract_csrf_token(response.text)
        if not token:
            logger.warning(f"[Interparcel] No csrf-token meta tag on quote page (status {response.status_code})")
            raise CsrfTokenUnavailable(
                "Failed to obtain CSRF token from Interparcel",
                carrier="interparcel",
                status_code=response.status_code,
            )

        cookie = response.cookies.get(SESSION_COOKIE_NAME) or settings.INTERPARCEL_SESSION_COOKIE
        return QuoteSession(csrf_token=token, session_cookie=cookie)


class StaticTokenProvider:
    """Fixed token, for a provider-issued credential or tests."""

    def __init__(self, csrf_token: str, session_cookie: Optional[str] = None):
        self._session = QuoteSession(csrf_token, session_cookie or settings.INTERPARCEL_SESSION_COOKIE)

    async def get_session(self, page_params: Dict[str, str]) -> QuoteSession:
        return self._session
