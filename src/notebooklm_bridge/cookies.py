"""Cookie set handling for the NotebookLM session.

A cookie set is scoped to exactly one host. Names are unique: when a name is
seen more than once while building a set, the last value wins, the same rule a
browser cookie jar applies.
"""

from collections.abc import Iterable

from .constants import REQUIRED_COOKIES, TARGET_HOST


def split_cookie_header(cookie_header: str) -> list[tuple[str, str]]:
    """Split a ``name=value; name=value`` header into ordered pairs.

    Duplicates are kept; fragments without ``=`` are dropped.
    """
    pairs = []
    for part in cookie_header.split(";"):
        part = part.strip()
        if "=" in part:
            name, value = part.split("=", 1)
            name = name.strip()
            if name:
                pairs.append((name, value.strip()))
    return pairs


def domain_matches(cookie_domain: str, host: str = TARGET_HOST) -> bool:
    """Return True if a cookie with ``cookie_domain`` is sent to ``host``.

    ``.google.com`` matches ``notebooklm.google.com``; ``accounts.google.com``
    and ``.youtube.com`` do not.
    """
    domain = cookie_domain.lower().lstrip(".")
    host = host.lower()
    return host == domain or host.endswith("." + domain)


class CookieSet:
    """Ordered, deduplicated mapping of cookie name to value."""

    def __init__(self, pairs: Iterable[tuple[str, str]] = ()):
        self._cookies: dict[str, str] = {}
        for name, value in pairs:
            self._cookies[name] = value

    @classmethod
    def from_header(cls, cookie_header: str) -> "CookieSet":
        return cls(split_cookie_header(cookie_header))

    @classmethod
    def from_browser_cookies(cls, cookies: Iterable[dict], host: str = TARGET_HOST) -> "CookieSet":
        """Build a set from CDP cookie objects, keeping only those sent to ``host``."""
        pairs = []
        for cookie in cookies:
            name = cookie.get("name", "")
            if not name:
                continue
            domain = cookie.get("domain")
            if domain is not None and not domain_matches(domain, host):
                continue
            pairs.append((name, cookie.get("value", "")))
        return cls(pairs)

    def __len__(self) -> int:
        return len(self._cookies)

    def __contains__(self, name: object) -> bool:
        return name in self._cookies

    def __getitem__(self, name: str) -> str:
        return self._cookies[name]

    def __iter__(self):
        return iter(self._cookies)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CookieSet):
            return NotImplemented
        return list(self._cookies.items()) == list(other._cookies.items())

    def __repr__(self) -> str:
        # Names only, values are secrets
        return f"CookieSet(names={list(self._cookies)})"

    def as_dict(self) -> dict[str, str]:
        return dict(self._cookies)

    @property
    def names(self) -> list[str]:
        return list(self._cookies)

    @property
    def header(self) -> str:
        """Get cookies as a header string."""
        return "; ".join(f"{k}={v}" for k, v in self._cookies.items())

    def missing_required(self) -> list[str]:
        return [name for name in REQUIRED_COOKIES if name not in self._cookies]

    def is_usable(self) -> bool:
        """Check if required cookies are present."""
        return not self.missing_required()


def dedupe_cookie_header(cookie_header: str, keep: str = "last") -> tuple[str, int, int]:
    """Deduplicate a cookie header string.

    Args:
        cookie_header: ``name=value; ...`` string, possibly with repeated names
        keep: ``"last"`` (browser semantics) or ``"first"``

    Returns:
        (deduplicated header, pair count before, unique name count after)
    """
    if keep not in ("first", "last"):
        raise ValueError(f"Invalid keep policy '{keep}'. Use 'first' or 'last'.")

    pairs = split_cookie_header(cookie_header)
    if keep == "last":
        cookie_set = CookieSet(pairs)
    else:
        seen: dict[str, str] = {}
        for name, value in pairs:
            seen.setdefault(name, value)
        cookie_set = CookieSet(seen.items())
    return cookie_set.header, len(pairs), len(cookie_set)


def duplicate_names(cookie_header: str) -> dict[str, int]:
    """Return ``{name: count}`` for names that occur more than once."""
    counts: dict[str, int] = {}
    for name, _ in split_cookie_header(cookie_header):
        counts[name] = counts.get(name, 0) + 1
    return {name: count for name, count in counts.items() if count > 1}
