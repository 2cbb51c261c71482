from unittest.mock import patch

import httpx
import pytest

from notebooklm_bridge.errors import RemoteServiceError, RemoteTimeoutError, SessionExpiredError
from notebooklm_bridge.session import (
    SessionContext,
    extract_csrf_from_page_source,
    extract_session_id_from_page,
    is_identity_provider_url,
)

COOKIE_HEADER = "SID=a; HSID=b"


def page_response(url, text="", status_code=200):
    return httpx.Response(status_code, request=httpx.Request("GET", url), text=text)


@pytest.fixture
def page_client():
    with patch("notebooklm_bridge.session.httpx.Client") as MockClient:
        yield MockClient.return_value.__enter__.return_value


class TestExtraction:
    def test_extract_tokens(self):
        html = '<script>{"SNlM0e":"csrf_abc","FdrFJe":"-12345"}</script>'

        assert extract_csrf_from_page_source(html) == "csrf_abc"
        assert extract_session_id_from_page(html) == "-12345"

    def test_missing_tokens(self):
        assert extract_csrf_from_page_source("<html></html>") is None
        assert extract_session_id_from_page("<html></html>") is None

    @pytest.mark.parametrize("url, expected", [
        ("https://accounts.google.com/ServiceLogin?continue=x", True),
        ("https://notebooklm.google.com/", False),
        ("https://accounts.google.com.evil.example/", False),
    ])
    def test_identity_provider_url(self, url, expected):
        assert is_identity_provider_url(url) is expected


class TestBootstrap:
    def test_success_sets_both_tokens(self, page_client):
        page_client.get.return_value = page_response(
            "https://notebooklm.google.com/", '{"SNlM0e":"csrf_abc","FdrFJe":"42","cfb2h":"boq_bl"}'
        )
        context = SessionContext()

        assert context.bootstrap(COOKIE_HEADER) == ("csrf_abc", "42")
        assert context.initialized is True
        assert context.build_label == "boq_bl"

    def test_redirect_to_login_fails_closed(self, page_client):
        # httpx follows redirects, so the final response URL is the login page
        page_client.get.return_value = page_response(
            "https://accounts.google.com/ServiceLogin", '{"SNlM0e":"should_not_be_used","FdrFJe":"1"}'
        )
        context = SessionContext()

        with pytest.raises(SessionExpiredError):
            context.bootstrap(COOKIE_HEADER)

        assert context.csrf_token is None
        assert context.session_id is None
        assert context.initialized is False

    def test_non_target_landing_host_fails_closed(self, page_client):
        page_client.get.return_value = page_response(
            "https://consent.google.com/ml?continue=x", '{"SNlM0e":"should_not_be_used"}'
        )
        context = SessionContext()

        with pytest.raises(SessionExpiredError):
            context.bootstrap(COOKIE_HEADER)

        assert context.initialized is False
        assert context.csrf_token is None

    def test_missing_csrf_sets_nothing(self, page_client):
        page_client.get.return_value = page_response("https://notebooklm.google.com/", '{"FdrFJe":"42"}')
        context = SessionContext()

        with pytest.raises(SessionExpiredError):
            context.bootstrap(COOKIE_HEADER)

        assert (context.csrf_token, context.session_id) == (None, None)

    def test_missing_session_id_is_tolerated(self, page_client):
        page_client.get.return_value = page_response("https://notebooklm.google.com/", '{"SNlM0e":"csrf_abc"}')
        context = SessionContext()

        assert context.bootstrap(COOKIE_HEADER) == ("csrf_abc", None)
        assert context.initialized is True

    def test_non_200(self, page_client):
        page_client.get.return_value = page_response("https://notebooklm.google.com/", "oops", status_code=503)

        with pytest.raises(RemoteServiceError) as exc_info:
            SessionContext().bootstrap(COOKIE_HEADER)
        assert exc_info.value.status_code == 503

    def test_timeout(self, page_client):
        page_client.get.side_effect = httpx.ConnectTimeout("timed out")

        with pytest.raises(RemoteTimeoutError):
            SessionContext().bootstrap(COOKIE_HEADER)

    def test_idempotent(self, page_client):
        page_client.get.return_value = page_response("https://notebooklm.google.com/", '{"SNlM0e":"csrf_abc"}')
        context = SessionContext()

        context.bootstrap(COOKIE_HEADER)
        context.bootstrap(COOKIE_HEADER)

        assert page_client.get.call_count == 1

    def test_cookie_header_is_sent(self):
        with patch("notebooklm_bridge.session.httpx.Client") as MockClient:
            page_client = MockClient.return_value.__enter__.return_value
            page_client.get.return_value = page_response("https://notebooklm.google.com/", '{"SNlM0e":"c"}')

            SessionContext().bootstrap(COOKIE_HEADER)

        _, kwargs = MockClient.call_args
        assert kwargs["headers"]["Cookie"] == COOKIE_HEADER
        assert kwargs["follow_redirects"] is True

    def test_repr_hides_tokens(self, page_client):
        page_client.get.return_value = page_response("https://notebooklm.google.com/", '{"SNlM0e":"csrf_secret"}')
        context = SessionContext()
        context.bootstrap(COOKIE_HEADER)

        assert "csrf_secret" not in repr(context)
