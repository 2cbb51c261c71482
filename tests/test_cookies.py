import pytest

from notebooklm_bridge.cookies import (
    CookieSet,
    dedupe_cookie_header,
    domain_matches,
    duplicate_names,
    split_cookie_header,
)


class TestCookieSet:
    def test_last_value_wins(self):
        cookie_set = CookieSet.from_header("SID=1; HSID=x; SID=2; SID=3")

        assert len(cookie_set) == 2
        assert cookie_set["SID"] == "3"
        assert cookie_set.names == ["SID", "HSID"]

    def test_header_round_trip_keeps_order(self):
        cookie_set = CookieSet.from_header("A=1; B=2=with=equals; C=")

        assert cookie_set.header == "A=1; B=2=with=equals; C="

    def test_missing_required(self):
        cookie_set = CookieSet.from_header("SID=a; HSID=b; SSID=c")

        assert cookie_set.missing_required() == ["APISID", "SAPISID"]
        assert not cookie_set.is_usable()

    def test_repr_shows_names_only(self):
        cookie_set = CookieSet.from_header("SID=very_secret_value")

        assert "very_secret_value" not in repr(cookie_set)
        assert "SID" in repr(cookie_set)

    def test_split_drops_fragments_without_equals(self):
        assert split_cookie_header("SID=a; garbage; ;HSID=b") == [("SID", "a"), ("HSID", "b")]


class TestDomainScoping:
    @pytest.mark.parametrize("domain, expected", [
        (".google.com", True),
        ("notebooklm.google.com", True),
        (".notebooklm.google.com", True),
        ("accounts.google.com", False),
        (".youtube.com", False),
        ("google.com.evil.example", False),
    ])
    def test_domain_matches(self, domain, expected):
        assert domain_matches(domain) is expected

    def test_foreign_cookies_never_enter_the_set(self):
        browser_cookies = [
            {"name": "SID", "value": "good", "domain": ".google.com"},
            {"name": "SID", "value": "from_idp", "domain": "accounts.google.com"},
            {"name": "HSID", "value": "h", "domain": ".google.com"},
            {"name": "__Secure-3PSID", "value": "yt", "domain": ".youtube.com"},
            {"name": "OSID", "value": "o", "domain": "notebooklm.google.com"},
        ]

        cookie_set = CookieSet.from_browser_cookies(browser_cookies)

        assert cookie_set.as_dict() == {"SID": "good", "HSID": "h", "OSID": "o"}


class TestDedupeUtility:
    def test_first_occurrence_wins(self):
        deduped, before, after = dedupe_cookie_header("SID=1; SID=2; HSID=x", keep="first")

        assert deduped == "SID=1; HSID=x"
        assert (before, after) == (3, 2)

    def test_last_occurrence_wins(self):
        deduped, before, after = dedupe_cookie_header("SID=1; SID=2; HSID=x")

        assert deduped == "SID=2; HSID=x"
        assert (before, after) == (3, 2)

    def test_invalid_policy(self):
        with pytest.raises(ValueError):
            dedupe_cookie_header("SID=1", keep="middle")

    def test_duplicate_names(self):
        assert duplicate_names("SID=1; SID=2; HSID=x; SID=3") == {"SID": 3}
