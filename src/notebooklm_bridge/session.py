"""Session bootstrap: derive per-session tokens from the NotebookLM entry page.

Authenticated RPCs need two values that only appear embedded in the entry
page HTML:

- ``SNlM0e``: the anti-forgery (CSRF) token, sent as ``at=`` in every body
- ``FdrFJe``: the session id, sent as ``f.sid=`` (optional for most calls)

The page also carries the frontend build label (``cfb2h``) used as ``bl=``.
"""

import logging
import re
from urllib.parse import urlparse

import httpx

from .constants import BASE_URL, IDENTITY_PROVIDER_HOSTS, TARGET_HOST
from .errors import RemoteServiceError, RemoteTimeoutError, SessionExpiredError

logger = logging.getLogger("notebooklm_bridge.api")

CSRF_PATTERN = re.compile(r'"SNlM0e":"([^"]+)"')
SESSION_ID_PATTERN = re.compile(r'"FdrFJe":"([^"]+)"')
BUILD_LABEL_PATTERN = re.compile(r'"cfb2h":"([^"]+)"')

PAGE_FETCH_TIMEOUT = 15.0

# Headers required for page fetch (must look like a browser navigation)
PAGE_FETCH_HEADERS = {
    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/143.0.0.0 Safari/537.36",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
    "Sec-Fetch-Dest": "document",
    "Sec-Fetch-Mode": "navigate",
    "Sec-Fetch-Site": "none",
    "Sec-Fetch-User": "?1",
    "sec-ch-ua": '"Google Chrome";v="143", "Chromium";v="143", "Not A(Brand";v="24"',
    "sec-ch-ua-mobile": "?0",
    "sec-ch-ua-platform": '"macOS"',
}


def extract_csrf_from_page_source(html: str) -> str | None:
    match = CSRF_PATTERN.search(html)
    return match.group(1) if match else None


def extract_session_id_from_page(html: str) -> str | None:
    match = SESSION_ID_PATTERN.search(html)
    return match.group(1) if match else None


def extract_build_label_from_page(html: str) -> str | None:
    match = BUILD_LABEL_PATTERN.search(html)
    return match.group(1) if match else None


def is_identity_provider_url(url: str) -> bool:
    """True if ``url`` points at a login host rather than NotebookLM."""
    host = (urlparse(url).hostname or "").lower()
    return any(host == idp or host.endswith("." + idp) for idp in IDENTITY_PROVIDER_HOSTS)


class SessionContext:
    """Security tokens for one client instance.

    ``csrf_token`` and ``session_id`` are assigned together, only after a
    bootstrap succeeds. A failed bootstrap leaves the context untouched.
    """

    def __init__(self):
        self.csrf_token: str | None = None
        self.session_id: str | None = None
        self.build_label: str | None = None
        self.initialized = False

    def __repr__(self) -> str:
        return (
            f"SessionContext(initialized={self.initialized}, "
            f"has_csrf={self.csrf_token is not None}, has_session_id={self.session_id is not None})"
        )

    def bootstrap(self, cookie_header: str) -> tuple[str, str | None]:
        """Fetch the entry page and extract the session tokens.

        Idempotent: after the first success, later calls return the stored
        tokens without another fetch.

        Args:
            cookie_header: ``name=value; ...`` cookie string

        Returns:
            (csrf_token, session_id); session_id may be None

        Raises:
            SessionExpiredError: redirected to a login page, or no CSRF token
            RemoteTimeoutError: the page fetch timed out
            RemoteServiceError: any other failed fetch
        """
        if self.initialized:
            return self.csrf_token, self.session_id

        headers = {**PAGE_FETCH_HEADERS, "Cookie": cookie_header}

        try:
            with httpx.Client(headers=headers, follow_redirects=True, timeout=PAGE_FETCH_TIMEOUT) as client:
                response = client.get(f"{BASE_URL}/")
        except httpx.TimeoutException as e:
            raise RemoteTimeoutError(f"Timed out fetching {BASE_URL}/ after {PAGE_FETCH_TIMEOUT}s") from e
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"Failed to fetch NotebookLM page: {e.__class__.__name__}") from e

        # Landing anywhere but NotebookLM means the cookies no longer carry a session
        final_host = (urlparse(str(response.url)).hostname or "").lower()
        if is_identity_provider_url(str(response.url)):
            logger.warning("Entry page redirected to login at %s; session is expired", final_host)
            raise SessionExpiredError()
        if final_host != TARGET_HOST:
            logger.warning("Entry page landed on %s instead of %s; treating session as expired", final_host, TARGET_HOST)
            raise SessionExpiredError()

        if response.status_code != 200:
            raise RemoteServiceError("Failed to fetch NotebookLM page", status_code=response.status_code)

        html = response.text
        csrf_token = extract_csrf_from_page_source(html)
        session_id = extract_session_id_from_page(html)
        build_label = extract_build_label_from_page(html)

        logger.debug(
            "Bootstrap page: %d chars, csrf=%s, session_id=%s, bl=%s",
            len(html), csrf_token is not None, session_id is not None, build_label,
        )

        if not csrf_token:
            raise SessionExpiredError(
                "Could not extract CSRF token from the NotebookLM page. The session is "
                "not authenticated. Run `notebooklm-bridge-auth` to log in again."
            )

        self.csrf_token, self.session_id = csrf_token, session_id
        self.build_label = build_label
        self.initialized = True
        return self.csrf_token, self.session_id
