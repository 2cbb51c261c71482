#!/usr/bin/env python3
"""CLI tool to authenticate the NotebookLM bridge.

Connects to Chrome via the DevTools Protocol, opens NotebookLM and waits for
the user to finish logging in. The session cookies for notebooklm.google.com
are then saved to ~/.notebooklm-mcp/auth.json.

Usage:
    notebooklm-bridge-auth                    # launch Chrome and log in
    notebooklm-bridge-auth --file cookies.txt # import a copied cookie header
    notebooklm-bridge-auth --check            # diagnose the saved session
    notebooklm-bridge-auth --fix-cookies      # drop duplicate cookie names
"""

import json
import logging
import platform
import shutil
import subprocess
import sys
import time
from collections.abc import Callable
from pathlib import Path
from urllib.parse import quote, urlparse

import httpx
import websocket

from .auth import AUTH_DIR_NAME, AuthLock, fix_cookies, get_cache_path, load_record, save_cookies
from .constants import BASE_URL, REQUIRED_COOKIES, SESSION_COOKIE_NAMES, TARGET_HOST
from .cookies import CookieSet, duplicate_names
from .errors import AuthenticationTimeoutError, NotebookLMError
from .session import SessionContext

logger = logging.getLogger("notebooklm_bridge.auth")

CDP_DEFAULT_PORT = 9222
NOTEBOOKLM_URL = f"{BASE_URL}/"

LOGIN_TIMEOUT = 300.0
LOGIN_POLL_INTERVAL = 2.0
# Extra wait when a login signal fires before the session cookie is set
LOGIN_SETTLE_DELAY = 3.0

# DOM markers of the authenticated app and of a signed-in account menu
MAIN_UI_SELECTOR = 'div[role="main"], .notebook-grid, [aria-label*="Notebook"], [aria-label*="notebook"]'
ACCOUNT_SELECTOR = (
    'button[aria-haspopup="true"] img[src*="googleusercontent.com"], '
    'a[href*="logout"], a[href*="Logout"]'
)

StatusCallback = Callable[[str], None]


def get_chrome_profile_dir() -> Path:
    # Chrome 136+ refuses remote debugging on the default profile
    return Path.home() / AUTH_DIR_NAME / "chrome-profile"


def find_chrome_binary() -> str | None:
    system = platform.system()
    if system == "Darwin":
        return "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome"
    if system == "Windows":
        return r"C:\Program Files\Google\Chrome\Application\chrome.exe"
    if system == "Linux":
        # Binary name varies by distro
        for candidate in ("google-chrome", "google-chrome-stable", "chromium", "chromium-browser"):
            if shutil.which(candidate):
                return candidate
    return None


def launch_chrome(port: int) -> subprocess.Popen | None:
    """Launch a visible Chrome with remote debugging enabled.

    Returns:
        Popen process handle if Chrome was launched, None if failed
    """
    chrome_path = find_chrome_binary()
    if not chrome_path:
        print(f"Chrome not found on {platform.system()}.")
        return None

    profile_dir = get_chrome_profile_dir()
    profile_dir.mkdir(parents=True, exist_ok=True)

    args = [
        chrome_path,
        f"--remote-debugging-port={port}",
        "--no-first-run",
        "--no-default-browser-check",
        "--disable-extensions",
        f"--user-data-dir={profile_dir}",  # login is remembered across runs
        "--remote-allow-origins=*",
        NOTEBOOKLM_URL,
    ]

    try:
        process = subprocess.Popen(args, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
    except OSError as e:
        print(f"Failed to launch Chrome: {e}")
        return None

    time.sleep(3)
    if process.poll() is not None:
        _, stderr = process.communicate()
        if stderr:
            print(f"Chrome error: {stderr.decode(errors='replace')[:500]}")
        return None
    return process


def close_chrome(process: subprocess.Popen) -> None:
    process.terminate()
    try:
        process.wait(timeout=5)
    except subprocess.TimeoutExpired:
        process.kill()


def get_chrome_debugger_url(port: int = CDP_DEFAULT_PORT) -> str | None:
    """Get the WebSocket debugger URL for Chrome, or None if nothing listens."""
    try:
        response = httpx.get(f"http://localhost:{port}/json/version", timeout=5)
        return response.json().get("webSocketDebuggerUrl")
    except (httpx.HTTPError, ValueError):
        return None


def get_chrome_pages(port: int = CDP_DEFAULT_PORT) -> list[dict]:
    """Get list of open pages in Chrome."""
    try:
        response = httpx.get(f"http://localhost:{port}/json", timeout=5)
        return response.json()
    except (httpx.HTTPError, ValueError):
        return []


def find_or_create_notebooklm_page(port: int = CDP_DEFAULT_PORT) -> dict | None:
    """Find an existing NotebookLM page or open a new one."""
    for page in get_chrome_pages(port):
        if page.get("type", "page") == "page" and is_target_url(page.get("url", "")):
            return page

    try:
        response = httpx.put(f"http://localhost:{port}/json/new?{quote(NOTEBOOKLM_URL, safe='')}", timeout=15)
        if response.status_code == 200 and response.text.strip():
            return response.json()
        print(f"Failed to create page: status={response.status_code}")
    except (httpx.HTTPError, ValueError) as e:
        print(f"Failed to create new page: {e}")
    return None


def execute_cdp_command(ws_url: str, method: str, params: dict | None = None) -> dict:
    """Execute a CDP command via WebSocket and return its result."""
    ws = websocket.create_connection(ws_url, timeout=30)
    try:
        ws.send(json.dumps({"id": 1, "method": method, "params": params or {}}))
        while True:
            response = json.loads(ws.recv())
            if response.get("id") == 1:
                if "error" in response:
                    raise websocket.WebSocketException(
                        f"CDP {method} failed: {response['error'].get('message', 'unknown error')}"
                    )
                return response.get("result", {})
    finally:
        ws.close()


def evaluate(ws_url: str, expression: str):
    """Evaluate a JavaScript expression in the page and return its value."""
    result = execute_cdp_command(ws_url, "Runtime.evaluate", {"expression": expression, "returnByValue": True})
    return result.get("result", {}).get("value")


def get_current_url(ws_url: str) -> str:
    return evaluate(ws_url, "window.location.href") or ""


def navigate_to_url(ws_url: str, url: str) -> None:
    execute_cdp_command(ws_url, "Page.navigate", {"url": url})


def get_page_cookies(ws_url: str) -> list[dict]:
    """Get the cookies the browser would send to NotebookLM."""
    result = execute_cdp_command(ws_url, "Network.getCookies", {"urls": [BASE_URL]})
    return result.get("cookies", [])


def is_target_url(url: str) -> bool:
    return (urlparse(url).hostname or "").lower() == TARGET_HOST


def is_authenticated_path(url: str) -> bool:
    path = urlparse(url).path or "/"
    return path == "/" or path.startswith("/notebook")


def _selector_probe(selector: str) -> str:
    return f"document.querySelector({json.dumps(selector)}) !== null"


def detect_login_signal(ws_url: str) -> str | None:
    """Return the name of the first login signal observed, or None.

    Every signal requires the page to be on NotebookLM itself; a login form
    on accounts.google.com never counts.
    """
    url = get_current_url(ws_url)
    if not is_target_url(url):
        return None
    if is_authenticated_path(url):
        return "url"
    if evaluate(ws_url, _selector_probe(MAIN_UI_SELECTOR)):
        return "main_ui"
    if evaluate(ws_url, _selector_probe(ACCOUNT_SELECTOR)):
        return "account_menu"
    if any(c.get("name") in SESSION_COOKIE_NAMES for c in get_page_cookies(ws_url)):
        return "session_cookie"
    return None


def wait_for_login(
    ws_url: str,
    timeout: float = LOGIN_TIMEOUT,
    poll_interval: float = LOGIN_POLL_INTERVAL,
    on_status: StatusCallback = print,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> str:
    """Poll the page until a login signal fires.

    Returns:
        Name of the signal that fired first

    Raises:
        AuthenticationTimeoutError: No signal within ``timeout`` seconds
    """
    deadline = clock() + timeout
    while True:
        try:
            signal = detect_login_signal(ws_url)
        except (websocket.WebSocketException, OSError) as e:
            # Page is mid-navigation
            logger.debug("Login probe failed: %s", e.__class__.__name__)
            signal = None
        if signal:
            on_status(f"Login detected ({signal}).")
            return signal

        if clock() >= deadline:
            raise AuthenticationTimeoutError(f"No login detected within {timeout:.0f}s. Please try again.")
        sleep(poll_interval)


def extract_cookie_set(ws_url: str) -> CookieSet:
    """Read NotebookLM cookies from the browser, scoped to the target host."""
    cookies = get_page_cookies(ws_url)
    cookie_set = CookieSet.from_browser_cookies(cookies, TARGET_HOST)
    logger.debug("Browser returned %d cookies, %d kept for %s", len(cookies), len(cookie_set), TARGET_HOST)
    return cookie_set


def _warn_missing(cookie_set: CookieSet, on_status: StatusCallback) -> None:
    missing = cookie_set.missing_required()
    if missing:
        logger.warning("Missing expected cookies: %s", ", ".join(missing))
        on_status(f"WARNING: Missing expected cookies: {', '.join(missing)}. Continuing anyway.")


def run_auth_flow(
    port: int = CDP_DEFAULT_PORT,
    auto_launch: bool = True,
    timeout: float = LOGIN_TIMEOUT,
    on_status: StatusCallback = print,
    sleep: Callable[[float], None] = time.sleep,
) -> CookieSet | None:
    """Run the interactive login and save the resulting session.

    Returns None when Chrome cannot be reached.

    Raises:
        AuthInProgressError: Another authentication run holds the lock
        AuthenticationTimeoutError: The user did not log in in time
    """
    with AuthLock():
        chrome_process = None
        try:
            debugger_url = get_chrome_debugger_url(port)
            if not debugger_url and auto_launch:
                on_status("Launching Chrome with the NotebookLM auth profile...")
                chrome_process = launch_chrome(port)
                if chrome_process:
                    debugger_url = get_chrome_debugger_url(port)

            if not debugger_url:
                on_status(f"ERROR: Cannot connect to Chrome on port {port}")
                on_status("TRY: Use file mode instead: notebooklm-bridge-auth --file")
                return None

            page = find_or_create_notebooklm_page(port)
            ws_url = page.get("webSocketDebuggerUrl") if page else None
            if not ws_url:
                on_status("ERROR: Failed to find or create a NotebookLM page")
                return None

            if not is_target_url(page.get("url", "")):
                navigate_to_url(ws_url, NOTEBOOKLM_URL)

            on_status("Waiting for login. Log in to NotebookLM in the Chrome window (Ctrl+C to cancel)...")
            wait_for_login(ws_url, timeout=timeout, on_status=on_status)

            cookie_set = extract_cookie_set(ws_url)
            if not any(name in cookie_set for name in SESSION_COOKIE_NAMES):
                on_status("No session cookie yet, waiting for the login to settle...")
                sleep(LOGIN_SETTLE_DELAY)
                cookie_set = extract_cookie_set(ws_url)
            _warn_missing(cookie_set, on_status)

            path = save_cookies(cookie_set.header)
            on_status(f"Saved {len(cookie_set)} cookies to {path}")
            return cookie_set
        finally:
            if chrome_process:
                close_chrome(chrome_process)


def read_cookie_file(cookie_file: str) -> str:
    """Read a cookie header from a file, ignoring blank and ``#`` lines."""
    with open(Path(cookie_file).expanduser(), encoding="utf-8") as f:
        lines = [line.strip() for line in f]
    return " ".join(line for line in lines if line and not line.startswith("#"))


def run_file_cookie_entry(cookie_file: str | None = None) -> CookieSet | None:
    """Import a cookie header copied from the browser's DevTools."""
    if not cookie_file:
        print("Copy the 'cookie:' request header of any batchexecute request from")
        print("DevTools > Network on notebooklm.google.com into a file, then enter its path.")
        try:
            cookie_file = input("Path to cookie file: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nCancelled.")
            return None
        if not cookie_file:
            print("ERROR: No file path provided.")
            return None

    try:
        cookie_string = read_cookie_file(cookie_file)
    except OSError as e:
        print(f"ERROR: Could not read {cookie_file}: {e.__class__.__name__}")
        return None

    cookie_set = CookieSet.from_header(cookie_string)
    if not cookie_set:
        print("ERROR: Could not parse any cookies. Expected format: SID=xxx; HSID=xxx; ...")
        return None

    _warn_missing(cookie_set, print)
    with AuthLock():
        path = save_cookies(cookie_set.header)
    print(f"Saved {len(cookie_set)} cookies to {path}")
    return cookie_set


def run_fix_cookies() -> bool:
    """Deduplicate the saved record in place."""
    before, after = fix_cookies()
    print(f"Before: {before} cookies")
    print(f"After: {after} cookies")
    print(f"Updated {get_cache_path()}")
    return True


def run_check() -> bool:
    """Print diagnostics for the saved session. Never prints cookie values."""
    path = get_cache_path()
    print(f"Session file: {path}")
    record = load_record(path)
    cookie_string = record["cookies"]
    cookie_set = CookieSet.from_header(cookie_string)

    print(f"Updated at: {record.get('updatedAt', 'unknown')}")
    print(f"Cookies: {len(cookie_set)}")
    print(f"Names: {', '.join(cookie_set.names)}")

    duplicates = duplicate_names(cookie_string)
    if duplicates:
        print("Duplicates: " + ", ".join(f"{n} x{c}" for n, c in duplicates.items()))
        print("Run `notebooklm-bridge-auth --fix-cookies` to remove them.")

    missing = cookie_set.missing_required()
    print(f"Required ({', '.join(REQUIRED_COOKIES)}): {'missing ' + ', '.join(missing) if missing else 'all present'}")

    context = SessionContext()
    context.bootstrap(cookie_set.header)
    print(f"CSRF token: {'present' if context.csrf_token else 'missing'}")
    print(f"Session id: {'present' if context.session_id else 'missing'}")
    print("Session OK")
    return True


def main():
    """Main entry point."""
    import argparse

    parser = argparse.ArgumentParser(
        description="Authenticate the NotebookLM bridge",
        epilog="After authentication, start the server with: notebooklm-bridge",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--file",
        nargs="?",
        const="",
        metavar="PATH",
        help="Import a cookie header from a file. Prompts for the path if none given.",
    )
    mode.add_argument("--fix-cookies", action="store_true", help="Remove duplicate cookie names from the saved session")
    mode.add_argument("--check", action="store_true", help="Diagnose the saved session")
    parser.add_argument(
        "--port",
        type=int,
        default=CDP_DEFAULT_PORT,
        help=f"Chrome DevTools port (default: {CDP_DEFAULT_PORT})",
    )
    parser.add_argument(
        "--no-auto-launch",
        action="store_true",
        help="Don't launch Chrome (requires Chrome running with remote debugging)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=LOGIN_TIMEOUT,
        help=f"Seconds to wait for login (default: {LOGIN_TIMEOUT:.0f})",
    )

    args = parser.parse_args()

    try:
        if args.check:
            ok = run_check()
        elif args.fix_cookies:
            ok = run_fix_cookies()
        elif args.file is not None:
            ok = run_file_cookie_entry(args.file or None) is not None
        else:
            ok = run_auth_flow(args.port, auto_launch=not args.no_auto_launch, timeout=args.timeout) is not None
    except KeyboardInterrupt:
        print("\nCancelled.")
        return 1
    except (NotebookLMError, websocket.WebSocketException, OSError) as e:
        print(f"ERROR: {e}")
        return 1
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
