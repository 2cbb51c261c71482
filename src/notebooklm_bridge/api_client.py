#!/usr/bin/env python3
"""NotebookLM RPC client (notebooklm.google.com).

Talks to the private ``batchexecute`` endpoint the NotebookLM web app uses.
The wire format is undocumented and can change without notice; when a reply
does not have the expected shape the client raises RemoteServiceError instead
of guessing.
"""

import json
import logging
import os
import random
import urllib.parse
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from . import constants
from .cookies import CookieSet
from .errors import (
    EmptySourceSetError,
    NoActiveTaskError,
    NotFoundError,
    RemoteServiceError,
    RemoteTimeoutError,
    SessionExpiredError,
)
from .polling import AsyncTask, TaskKind, TaskStatus, research_status, studio_status
from .session import SessionContext

# Configure logger (API internals only logged at DEBUG level, usually disabled)
logger = logging.getLogger("notebooklm_bridge.api")
logger.setLevel(logging.WARNING)

# RPC ID to method name mapping for debug logging
RPC_NAMES = {
    "wXbhsf": "list_notebooks",
    "rLM1Ne": "get_notebook",
    "CCqFvf": "create_notebook",
    "WWINqb": "delete_notebook",
    "izAoDd": "add_source",
    "Ljjv0c": "start_fast_research",
    "QA9ei": "start_deep_research",
    "e3bVqc": "poll_research",
    "R7cb6c": "create_studio",
    "gArtLc": "poll_studio",
    "yyryJe": "generate_mind_map",
}

# Timeout configuration (seconds)
DEFAULT_TIMEOUT = 30.0
SOURCE_ADD_TIMEOUT = 120.0  # large pages/documents take a while to ingest
QUERY_TIMEOUT = 120.0


def _format_debug_json(data: Any, max_length: int = 2000) -> str:
    """Format data as pretty-printed JSON for debug logging."""
    try:
        formatted = json.dumps(data, indent=2, ensure_ascii=False)
    except (TypeError, ValueError):
        formatted = str(data)
    if len(formatted) > max_length:
        return formatted[:max_length] + "\n  ... (truncated)"
    return formatted


def _decode_request_body(body: str) -> dict[str, Any]:
    """Decode a URL-encoded request body for debug display.

    The CSRF token is replaced by a placeholder.
    """
    result: dict[str, Any] = {}
    parsed = urllib.parse.parse_qs(body.rstrip("&"))

    if "f.req" in parsed:
        f_req_raw = parsed["f.req"][0]
        try:
            f_req = json.loads(f_req_raw)
        except json.JSONDecodeError:
            result["f.req"] = f_req_raw
        else:
            result["f.req"] = f_req
            # [[[rpc_id, params_json, null, "generic"]]]
            try:
                rpc_call = f_req[0][0]
                result["rpc_id"] = rpc_call[0]
                result["params"] = json.loads(rpc_call[1])
            except (IndexError, TypeError, KeyError, json.JSONDecodeError):
                pass

    if "at" in parsed:
        result["at"] = "(csrf_token)"
    return result


def _redact_url(url: str) -> dict[str, Any]:
    """Parse URL query parameters for debug display, hiding the session id."""
    params = urllib.parse.parse_qs(urllib.parse.urlparse(url).query)
    flat = {k: v[0] if len(v) == 1 else v for k, v in params.items()}
    if "f.sid" in flat:
        flat["f.sid"] = "(session_id)"
    return flat


def parse_timestamp(ts_array: list | None) -> str | None:
    """Convert [seconds, nanoseconds] timestamp array to ISO format string."""
    if not ts_array or not isinstance(ts_array, list):
        return None

    seconds = ts_array[0]
    if not isinstance(seconds, (int, float)):
        return None
    try:
        dt = datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (ValueError, OSError, OverflowError):
        return None
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


def validate_source_url(url: str) -> str:
    """Return the stripped URL or raise ValueError if it is not http(s)."""
    candidate = (url or "").strip()
    parsed = urllib.parse.urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.netloc or " " in candidate:
        raise ValueError(f"Invalid URL '{url}'. Expected an absolute http(s) URL.")
    return candidate


def _is_youtube(url: str) -> bool:
    host = (urllib.parse.urlparse(url).hostname or "").lower()
    return host == "youtu.be" or host == "youtube.com" or host.endswith(".youtube.com")


@dataclass
class ConversationTurn:
    """A single query/answer turn, replayed as history on follow-up queries."""
    query: str
    answer: str
    turn_number: int


@dataclass
class Source:
    """A source inside a notebook."""

    id: str
    title: str
    kind: str = "other"           # pasted_text | url | other
    type_name: str = "unknown"    # service type, e.g. web_page, youtube, pdf
    url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "title": self.title, "kind": self.kind, "type": self.type_name, "url": self.url}


@dataclass
class Notebook:
    """Represents a NotebookLM notebook."""

    id: str
    title: str
    source_count: int
    sources: list[Source] = field(default_factory=list)
    is_owned: bool = True     # False if shared with the user by someone else
    is_shared: bool = False   # True if an owned notebook is shared with others
    created_at: str | None = None
    modified_at: str | None = None

    @property
    def url(self) -> str:
        return f"{constants.BASE_URL}/notebook/{self.id}"

    @property
    def ownership(self) -> str:
        return "owned" if self.is_owned else "shared_with_me"


def _source_kind(type_code: Any) -> str:
    if type_code == constants.SOURCE_TYPE_PASTED_TEXT:
        return "pasted_text"
    if type_code in (constants.SOURCE_TYPE_WEB_PAGE, constants.SOURCE_TYPE_YOUTUBE):
        return "url"
    return "other"


def _parse_source(src: Any) -> Source | None:
    """Parse ``[[source_id], title, metadata, ...]``."""
    if not isinstance(src, list) or len(src) < 2:
        return None

    ids = src[0]
    source_id = ids[0] if isinstance(ids, list) and ids else ids
    if not isinstance(source_id, str):
        return None

    title = src[1] if isinstance(src[1], str) else "Untitled"
    type_code = None
    url = None
    metadata = src[2] if len(src) > 2 else None
    if isinstance(metadata, list):
        if len(metadata) > 4:
            type_code = metadata[4]
        # URL at position 7 for web sources
        if len(metadata) > 7 and isinstance(metadata[7], list) and metadata[7]:
            url = metadata[7][0] if isinstance(metadata[7][0], str) else None

    return Source(
        id=source_id,
        title=title,
        kind=_source_kind(type_code),
        type_name=constants.SOURCE_TYPES.get_name(type_code),
        url=url,
    )


class NotebookLMClient:
    """Client for the NotebookLM internal API.

    Session tokens are bootstrapped lazily: the first operation fetches the
    entry page once, later operations reuse the tokens. No call is retried;
    an expired session surfaces as SessionExpiredError.
    """

    # Known RPC IDs
    RPC_LIST_NOTEBOOKS = "wXbhsf"
    RPC_GET_NOTEBOOK = "rLM1Ne"
    RPC_CREATE_NOTEBOOK = "CCqFvf"
    RPC_DELETE_NOTEBOOK = "WWINqb"
    RPC_ADD_SOURCE = "izAoDd"  # URL, text and Drive sources
    RPC_START_FAST_RESEARCH = "Ljjv0c"
    RPC_START_DEEP_RESEARCH = "QA9ei"
    RPC_POLL_RESEARCH = "e3bVqc"
    RPC_CREATE_STUDIO = "R7cb6c"
    RPC_POLL_STUDIO = "gArtLc"
    RPC_GENERATE_MIND_MAP = "yyryJe"

    def __init__(
        self,
        cookies: str | CookieSet | dict[str, str],
        timeout: float = DEFAULT_TIMEOUT,
    ):
        """
        Args:
            cookies: Google auth cookies as a header string, dict or CookieSet
            timeout: Default per-request timeout in seconds
        """
        if isinstance(cookies, CookieSet):
            self.cookies = cookies
        elif isinstance(cookies, dict):
            self.cookies = CookieSet(cookies.items())
        else:
            self.cookies = CookieSet.from_header(cookies)

        self.timeout = timeout
        self.session = SessionContext()
        self._client: httpx.Client | None = None

        # Follow-up queries must replay the whole conversation
        self._conversation_cache: dict[str, list[ConversationTurn]] = {}

        # One outstanding research task per notebook
        self._active_research: dict[str, AsyncTask] = {}

        # Request counter for _reqid parameter (required for query endpoint)
        self._reqid_counter = random.randint(100000, 999999)

    def __enter__(self) -> "NotebookLMClient":
        return self

    def __exit__(self, *args) -> None:
        self.close()

    # =========================================================================
    # Session and transport
    # =========================================================================

    def ensure_session(self) -> SessionContext:
        if not self.session.initialized:
            missing = self.cookies.missing_required()
            if missing:
                logger.warning("Cookie set lacks required cookies: %s", ", ".join(missing))
            self.session.bootstrap(self.cookies.header)
        return self.session

    @property
    def build_label(self) -> str:
        return self.session.build_label or os.environ.get("NOTEBOOKLM_BL", constants.DEFAULT_BUILD_LABEL)

    def _get_client(self) -> httpx.Client:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.Client(
                headers={
                    "Content-Type": "application/x-www-form-urlencoded;charset=UTF-8",
                    "Origin": constants.BASE_URL,
                    "Referer": f"{constants.BASE_URL}/",
                    "Cookie": self.cookies.header,
                    "X-Same-Domain": "1",
                    "User-Agent": "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36",
                },
                timeout=self.timeout,
            )
        return self._client

    def _encode_body(self, f_req: Any) -> str:
        # Compact separators match Chrome's encoding
        f_req_json = json.dumps(f_req, separators=(",", ":"))
        body_parts = [f"f.req={urllib.parse.quote(f_req_json, safe='')}"]
        if self.session.csrf_token:
            body_parts.append(f"at={urllib.parse.quote(self.session.csrf_token, safe='')}")
        # Trailing & matches NotebookLM's format
        return "&".join(body_parts) + "&"

    def _build_request_body(self, rpc_id: str, params: Any) -> str:
        """Build the batchexecute request body."""
        params_json = json.dumps(params, separators=(",", ":"))
        return self._encode_body([[[rpc_id, params_json, None, "generic"]]])

    def _build_url(self, rpc_id: str, source_path: str = "/") -> str:
        """Build the batchexecute URL with query params."""
        params = {
            "rpcids": rpc_id,
            "source-path": source_path,
            "bl": self.build_label,
            "hl": "en",
            "rt": "c",
        }
        if self.session.session_id:
            params["f.sid"] = self.session.session_id
        return f"{constants.BATCHEXECUTE_URL}?{urllib.parse.urlencode(params)}"

    def _post(self, url: str, body: str, timeout: float | None = None) -> httpx.Response:
        """POST and map transport/HTTP failures onto the error taxonomy."""
        client = self._get_client()
        try:
            response = client.post(url, content=body, timeout=timeout or self.timeout)
        except httpx.TimeoutException as e:
            raise RemoteTimeoutError(f"Request timed out after {timeout or self.timeout}s") from e
        except httpx.HTTPError as e:
            raise RemoteServiceError(f"Request failed: {e.__class__.__name__}") from e

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Response Status: %s (%d chars)", response.status_code, len(response.text))

        if response.status_code in (401, 403):
            raise SessionExpiredError()
        if response.status_code == 404:
            raise NotFoundError("NotebookLM returned 404 Not Found")
        if response.status_code >= 400:
            raise RemoteServiceError("NotebookLM request failed", status_code=response.status_code, body=response.text)
        return response

    def _parse_response(self, response_text: str) -> list:
        """Parse the batchexecute response.

        Format::

            )]}'
            <byte_count>
            <json_array>
            ...
        """
        # Remove the anti-XSSI prefix
        if response_text.startswith(")]}'"):
            response_text = response_text[4:]

        results = []
        for line in response_text.strip().split("\n"):
            line = line.strip()
            if not line or line.isdigit():
                continue
            try:
                results.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return results

    def _extract_rpc_result(self, parsed_response: list, rpc_id: str) -> Any:
        """Extract the result for a specific RPC ID from the parsed response.

        An error entry looks like ``["wrb.fr", RPC_ID, null, null, null, [code], "generic"]``.
        A reply with no entry for the RPC (an HTML interstitial, a changed wire
        format) raises instead of being read as an empty result.
        """
        name = RPC_NAMES.get(rpc_id, rpc_id)
        for chunk in parsed_response:
            if not isinstance(chunk, list):
                continue
            for item in chunk:
                if not (isinstance(item, list) and len(item) >= 3):
                    continue
                if item[0] != "wrb.fr" or item[1] != rpc_id:
                    continue

                if item[2] is None:
                    if len(item) > 5 and isinstance(item[5], list) and item[5]:
                        self._raise_rpc_error(rpc_id, item[5])
                    raise RemoteServiceError(f"{name}: error entry without a result or code")

                result_str = item[2]
                if isinstance(result_str, str):
                    try:
                        return json.loads(result_str)
                    except json.JSONDecodeError:
                        return result_str
                return result_str
        raise RemoteServiceError(f"{name}: no result in response")

    @staticmethod
    def _raise_rpc_error(rpc_id: str, codes: list) -> None:
        name = RPC_NAMES.get(rpc_id, rpc_id)
        if constants.RPC_ERROR_UNAUTHENTICATED in codes:
            raise SessionExpiredError()
        if constants.RPC_ERROR_NOT_FOUND in codes:
            raise NotFoundError(f"{name}: referenced object not found")
        if constants.RPC_ERROR_DEADLINE_EXCEEDED in codes:
            raise RemoteTimeoutError(f"{name}: deadline exceeded on the service side")
        raise RemoteServiceError(f"{name}: RPC error {codes}")

    def _call_rpc(
        self,
        rpc_id: str,
        params: Any,
        path: str = "/",
        timeout: float | None = None,
    ) -> Any:
        """Execute an RPC call and return the extracted result."""
        self.ensure_session()
        body = self._build_request_body(rpc_id, params)
        url = self._build_url(rpc_id, path)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("=" * 70)
            logger.debug("RPC Call: %s (%s)", rpc_id, RPC_NAMES.get(rpc_id, "unknown"))
            logger.debug("URL Parameters: %s", _redact_url(url))
            decoded = _decode_request_body(body)
            logger.debug("Request Params:\n%s", _format_debug_json(decoded.get("params", decoded)))

        response = self._post(url, body, timeout)
        result = self._extract_rpc_result(self._parse_response(response.text), rpc_id)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug("Response Data:\n%s", _format_debug_json(result))
        return result

    # =========================================================================
    # Notebook Operations
    # =========================================================================

    def list_notebooks(self) -> list[Notebook]:
        """List all notebooks, in the order NotebookLM returns them."""
        result = self._call_rpc(self.RPC_LIST_NOTEBOOKS, [None, 1, None, [2]])

        notebooks = []
        if not result or not isinstance(result, list):
            return notebooks

        #   [0] = "Title"
        #   [1] = [sources]
        #   [2] = "notebook-uuid"
        #   [3] = "emoji" or null
        #   [5] = [metadata] where metadata[0] = ownership (1=mine, 2=shared_with_me)
        notebook_list = result[0] if isinstance(result[0], list) else result

        for nb_data in notebook_list:
            if not isinstance(nb_data, list) or len(nb_data) < 3:
                continue
            notebook_id = nb_data[2]
            if not isinstance(notebook_id, str) or not notebook_id:
                continue

            title = nb_data[0] if isinstance(nb_data[0], str) else "Untitled"
            sources_data = nb_data[1] if isinstance(nb_data[1], list) else []
            sources = [s for s in (_parse_source(src) for src in sources_data) if s]

            is_owned, is_shared = True, False
            created_at = modified_at = None
            if len(nb_data) > 5 and isinstance(nb_data[5], list) and nb_data[5]:
                metadata = nb_data[5]
                is_owned = metadata[0] == constants.OWNERSHIP_MINE
                # [1, true, ...] shared, [1, false, ...] private
                if len(metadata) > 1:
                    is_shared = bool(metadata[1])
                # metadata[5] = last modified, metadata[8] = created
                if len(metadata) > 5:
                    modified_at = parse_timestamp(metadata[5])
                if len(metadata) > 8:
                    created_at = parse_timestamp(metadata[8])

            notebooks.append(Notebook(
                id=notebook_id,
                title=title,
                source_count=len(sources),
                sources=sources,
                is_owned=is_owned,
                is_shared=is_shared,
                created_at=created_at,
                modified_at=modified_at,
            ))

        return notebooks

    def get_notebook(self, notebook_id: str) -> Any:
        """Get raw notebook details (``[[title, [sources], id, ...]]``)."""
        return self._call_rpc(
            self.RPC_GET_NOTEBOOK,
            [notebook_id, None, [2], None, 0],
            f"/notebook/{notebook_id}",
        )

    def get_notebook_sources(self, notebook_id: str) -> list[Source]:
        data = self.get_notebook(notebook_id)
        if not data or not isinstance(data, list):
            raise NotFoundError(f"Notebook {notebook_id} not found")

        notebook_info = data[0] if isinstance(data[0], list) else data
        sources_data = notebook_info[1] if len(notebook_info) > 1 and isinstance(notebook_info[1], list) else []
        return [s for s in (_parse_source(src) for src in sources_data) if s]

    def create_notebook(self, title: str | None = None) -> str:
        """Create a new notebook and return its id.

        Without a title the notebook is named after the current time.
        """
        title = title or f"Notebook {datetime.now().strftime('%Y-%m-%d %H:%M')}"
        params = [title, None, None, [2], [1, None, None, None, None, None, None, None, None, None, [1]]]
        result = self._call_rpc(self.RPC_CREATE_NOTEBOOK, params)

        if isinstance(result, list) and len(result) >= 3 and isinstance(result[2], str) and result[2]:
            logger.info("Created notebook %s", result[2])
            return result[2]
        raise RemoteServiceError("create_notebook: unexpected response shape")

    def delete_notebook(self, notebook_id: str) -> None:
        """Delete an owned notebook permanently.

        WARNING: This action is IRREVERSIBLE.

        Raises:
            NotFoundError: No notebook with this id is owned by the account
        """
        notebook = next((nb for nb in self.list_notebooks() if nb.id == notebook_id), None)
        if notebook is None:
            raise NotFoundError(f"Notebook {notebook_id} not found")
        if not notebook.is_owned:
            raise NotFoundError(f"Notebook {notebook_id} is shared with you, not owned; only owners can delete it")

        self._call_rpc(self.RPC_DELETE_NOTEBOOK, [[notebook_id], [2]])
        logger.info("Deleted notebook %s", notebook_id)

    # =========================================================================
    # Sources
    # =========================================================================

    def _add_source(self, notebook_id: str, source_data: list) -> str:
        params = [
            [source_data],
            notebook_id,
            [2],
            [1, None, None, None, None, None, None, None, None, None, [1]],
        ]
        result = self._call_rpc(
            self.RPC_ADD_SOURCE, params, f"/notebook/{notebook_id}", timeout=SOURCE_ADD_TIMEOUT
        )

        # [[[[source_id], title, ...]]]
        try:
            source_id = result[0][0][0][0]
        except (IndexError, TypeError, KeyError):
            source_id = None
        if not isinstance(source_id, str) or not source_id:
            raise RemoteServiceError("add_source: unexpected response shape")
        return source_id

    def add_text_source(self, notebook_id: str, title: str, text: str) -> str:
        """Add pasted text as a source and return the new source id."""
        if not text or not text.strip():
            raise ValueError("Text source body must not be empty")
        title = title or "Pasted Text"

        source_data = [None, [title, text], None, 2, None, None, None, None, None, None, 1]
        return self._add_source(notebook_id, source_data)

    def add_url_source(self, notebook_id: str, url: str) -> str:
        """Add a website or YouTube URL as a source and return the new source id.

        The URL is validated locally before any request is made. Fetch errors
        on the service side (paywalls, unreachable hosts) are surfaced as-is.
        """
        url = validate_source_url(url)

        if _is_youtube(url):
            # YouTube: URL at position 7
            source_data = [None, None, None, None, None, None, None, [url], None, None, 1]
        else:
            # Regular website: URL at position 2
            source_data = [None, None, [url], None, None, None, None, None, None, None, 1]
        return self._add_source(notebook_id, source_data)

    # =========================================================================
    # Query
    # =========================================================================

    def _build_conversation_history(self, conversation_id: str) -> list | None:
        """Build ``[[answer, null, 2], [query, null, 1], ...]``, oldest turn first."""
        turns = self._conversation_cache.get(conversation_id, [])
        history = []
        for turn in turns:
            history.append([turn.answer, None, 2])
            history.append([turn.query, None, 1])
        return history or None

    def _cache_conversation_turn(self, conversation_id: str, query: str, answer: str) -> None:
        turns = self._conversation_cache.setdefault(conversation_id, [])
        turns.append(ConversationTurn(query=query, answer=answer, turn_number=len(turns) + 1))

    def clear_conversation(self, conversation_id: str) -> bool:
        return self._conversation_cache.pop(conversation_id, None) is not None

    def query(
        self,
        notebook_id: str,
        query_text: str,
        source_ids: list[str] | None = None,
        conversation_id: str | None = None,
        timeout: float = QUERY_TIMEOUT,
    ) -> dict[str, Any]:
        """Ask a question against a notebook's sources.

        A notebook without sources is allowed; the answer may then be empty.

        Args:
            notebook_id: The notebook UUID
            query_text: The question to ask
            source_ids: Sources to ground on (default: all sources)
            conversation_id: Continue an earlier conversation from this client
            timeout: Request timeout in seconds

        Returns:
            Dict with answer, conversation_id, turn_number, is_follow_up
        """
        if not query_text or not query_text.strip():
            raise ValueError("Query must not be empty")

        if source_ids is None:
            source_ids = [s.id for s in self.get_notebook_sources(notebook_id)]
        else:
            self.ensure_session()

        is_follow_up = conversation_id is not None
        if conversation_id is None:
            conversation_id = str(uuid.uuid4())
        history = self._build_conversation_history(conversation_id) if is_follow_up else None

        # [[[sid]]] per source (3 brackets)
        params = [
            [[[sid]] for sid in source_ids],
            query_text,
            history,
            [2, None, [1]],
            conversation_id,
        ]
        body = self._encode_body([None, json.dumps(params, separators=(",", ":"))])

        self._reqid_counter += 100000
        url_params = {
            "bl": self.build_label,
            "hl": "en",
            "_reqid": str(self._reqid_counter),
            "rt": "c",
        }
        if self.session.session_id:
            url_params["f.sid"] = self.session.session_id
        url = f"{constants.QUERY_URL}?{urllib.parse.urlencode(url_params)}"

        response = self._post(url, body, timeout=timeout)
        answer = self._parse_query_response(response.text)

        if answer:
            self._cache_conversation_turn(conversation_id, query_text, answer)

        return {
            "answer": answer,
            "conversation_id": conversation_id,
            "turn_number": len(self._conversation_cache.get(conversation_id, [])),
            "is_follow_up": is_follow_up,
        }

    def _parse_query_response(self, response_text: str) -> str:
        """Extract the final answer from the streamed query response.

        Each chunk is tagged 1 (answer) or 2 (thinking step). The longest
        answer chunk wins; thinking text is the fallback.
        """
        if response_text.startswith(")]}'"):
            response_text = response_text[4:]

        longest_answer = ""
        longest_thinking = ""
        for line in response_text.strip().split("\n"):
            line = line.strip()
            if not line or line.isdigit():
                continue
            text, is_answer = self._extract_answer_from_chunk(line)
            if not text:
                continue
            if is_answer and len(text) > len(longest_answer):
                longest_answer = text
            elif not is_answer and len(text) > len(longest_thinking):
                longest_thinking = text

        return longest_answer or longest_thinking

    def _extract_answer_from_chunk(self, json_str: str) -> tuple[str | None, bool]:
        """Extract answer text from ``[["wrb.fr", null, "<json>", ...]]``.

        The inner JSON is ``[["answer_text", null, [...], null, [..., type]]]``.
        """
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError:
            return None, False
        if not isinstance(data, list):
            return None, False

        for item in data:
            if not isinstance(item, list) or len(item) < 3 or item[0] != "wrb.fr":
                continue
            if not isinstance(item[2], str):
                continue
            try:
                inner = json.loads(item[2])
            except json.JSONDecodeError:
                continue
            if not isinstance(inner, list) or not inner:
                continue

            first = inner[0]
            if isinstance(first, list) and first and isinstance(first[0], str) and first[0]:
                is_answer = False
                if len(first) > 4 and isinstance(first[4], list) and first[4]:
                    is_answer = first[4][-1] == 1
                return first[0], is_answer
            if isinstance(first, str) and first:
                return first, False

        return None, False

    # =========================================================================
    # Research
    # =========================================================================

    def start_research(
        self,
        notebook_id: str,
        query: str,
        source: str = "web",
        mode: str = "fast",
    ) -> AsyncTask:
        """Start a research job that discovers sources for a topic.

        Returns immediately with a pending task; use poll_research to follow it.

        Args:
            notebook_id: The notebook UUID
            query: Research topic
            source: ``web`` or ``drive``
            mode: ``fast`` or ``deep`` (deep supports web only)
        """
        if not query or not query.strip():
            raise ValueError("Research query must not be empty")
        source_type = constants.RESEARCH_SOURCES.get_code(source)
        mode_code = constants.RESEARCH_MODES.get_code(mode)
        if mode_code == constants.RESEARCH_MODE_DEEP and source_type == constants.RESEARCH_SOURCE_DRIVE:
            raise ValueError("Deep Research only supports Web sources. Use mode='fast' for Drive.")

        if mode_code == constants.RESEARCH_MODE_FAST:
            rpc_id = self.RPC_START_FAST_RESEARCH
            params = [[query, source_type], None, 1, notebook_id]
        else:
            rpc_id = self.RPC_START_DEEP_RESEARCH
            params = [None, [1], [query, source_type], 5, notebook_id]

        result = self._call_rpc(rpc_id, params, f"/notebook/{notebook_id}")
        if not isinstance(result, list) or not result or not isinstance(result[0], str):
            raise RemoteServiceError("start_research: unexpected response shape")

        task = AsyncTask(
            task_id=result[0],
            kind=TaskKind.RESEARCH,
            notebook_id=notebook_id,
            status=TaskStatus.PENDING,
            result={
                "query": query,
                "source": constants.RESEARCH_SOURCES.get_name(source_type),
                "mode": constants.RESEARCH_MODES.get_name(mode_code),
                "report_id": result[1] if len(result) > 1 else None,
            },
        )
        self._active_research[notebook_id] = task
        logger.info("Started %s research %s on notebook %s", task.result["mode"], task.task_id, notebook_id)
        return task

    def poll_research(self, notebook_id: str, task_id: str | None = None) -> AsyncTask:
        """Return the current snapshot of a notebook's research task.

        Makes exactly one request and never waits for completion. The task
        followed is ``task_id`` if given, else the one started by this client,
        else the most recent task NotebookLM reports.

        Raises:
            NoActiveTaskError: Nothing is outstanding for this notebook
        """
        result = self._call_rpc(self.RPC_POLL_RESEARCH, [None, None, notebook_id], f"/notebook/{notebook_id}")
        tasks = self._parse_research_tasks(notebook_id, result)

        tracked = self._active_research.get(notebook_id)
        wanted = task_id or (tracked.task_id if tracked else None)

        if wanted:
            snapshot = next((t for t in tasks if t.task_id == wanted), None)
            if snapshot is None:
                if tracked is None or tracked.task_id != wanted:
                    raise NoActiveTaskError(f"No research task {wanted} on notebook {notebook_id}")
                # Submitted but not yet listed by the service
                snapshot = AsyncTask(
                    task_id=tracked.task_id,
                    kind=TaskKind.RESEARCH,
                    notebook_id=notebook_id,
                    status=TaskStatus.PENDING,
                    result=dict(tracked.result),
                )
        elif tasks:
            snapshot = tasks[0]
        else:
            raise NoActiveTaskError(f"No active research on notebook {notebook_id}")

        if snapshot.is_terminal and tracked is not None and tracked.task_id == snapshot.task_id:
            del self._active_research[notebook_id]
        return snapshot

    def _parse_research_tasks(self, notebook_id: str, result: Any) -> list[AsyncTask]:
        """Parse ``[[task_id, task_info], ...]``, most recent first."""
        if not result or not isinstance(result, list):
            return []

        # Unwrap [[[task_id, task_info], ...], [ts], ...]
        if isinstance(result[0], list) and result[0] and isinstance(result[0][0], list):
            result = result[0]

        tasks = []
        for task_data in result:
            if not isinstance(task_data, list) or len(task_data) < 2:
                continue
            task_id, task_info = task_data[0], task_data[1]
            # Timestamp arrays have int ids
            if not isinstance(task_id, str) or not isinstance(task_info, list):
                continue

            query_info = task_info[1] if len(task_info) > 1 and isinstance(task_info[1], list) else []
            research_mode = task_info[2] if len(task_info) > 2 else None
            sources_and_summary = task_info[3] if len(task_info) > 3 else []
            status_code = task_info[4] if len(task_info) > 4 else None

            sources_data: list = []
            summary = ""
            if isinstance(sources_and_summary, list) and sources_and_summary:
                if isinstance(sources_and_summary[0], list):
                    sources_data = sources_and_summary[0]
                if len(sources_and_summary) > 1 and isinstance(sources_and_summary[1], str):
                    summary = sources_and_summary[1]

            sources, report = self._parse_research_sources(sources_data)
            source_type = query_info[1] if len(query_info) > 1 else constants.RESEARCH_SOURCE_WEB

            tasks.append(AsyncTask(
                task_id=task_id,
                kind=TaskKind.RESEARCH,
                notebook_id=notebook_id,
                status=research_status(status_code),
                result={
                    "query": query_info[0] if query_info else "",
                    "source": constants.RESEARCH_SOURCES.get_name(source_type),
                    "mode": "deep" if research_mode == constants.RESEARCH_MODE_DEEP else "fast",
                    "sources": sources,
                    "source_count": len(sources),
                    "summary": summary,
                    "report": report,
                },
            ))
        return tasks

    @staticmethod
    def _parse_research_sources(sources_data: list) -> tuple[list[dict], str]:
        """Fast research: ``[url, title, desc, type]``. Deep: ``[null, title, null, type, .., .., [report]]``."""
        sources = []
        report = ""
        for idx, src in enumerate(sources_data):
            if not isinstance(src, list) or len(src) < 2:
                continue

            if src[0] is None and isinstance(src[1], str):
                result_type = src[3] if len(src) > 3 and isinstance(src[3], int) else constants.RESULT_TYPE_DEEP_REPORT
                if len(src) > 6 and isinstance(src[6], list) and src[6] and isinstance(src[6][0], str):
                    report = src[6][0]
                url, title, desc = "", src[1], ""
            else:
                result_type = src[3] if len(src) > 3 and isinstance(src[3], int) else constants.RESULT_TYPE_WEB
                url = src[0] if isinstance(src[0], str) else ""
                title = src[1] if isinstance(src[1], str) else ""
                desc = src[2] if len(src) > 2 and isinstance(src[2], str) else ""

            sources.append({
                "index": idx,
                "url": url,
                "title": title,
                "description": desc,
                "result_type": constants.RESULT_TYPES.get_name(result_type),
            })
        return sources, report

    # =========================================================================
    # Studio
    # =========================================================================

    def create_audio_overview(
        self,
        notebook_id: str,
        source_ids: list[str] | None = None,
        format: str = "deep_dive",
        length: str = "default",
        language: str = "en",
        focus_prompt: str = "",
    ) -> AsyncTask:
        """Start generating an Audio Overview; follow it with poll_studio_status."""
        format_code = constants.AUDIO_FORMATS.get_code(format)
        length_code = constants.AUDIO_LENGTHS.get_code(length)
        if source_ids is None:
            source_ids = [s.id for s in self.get_notebook_sources(notebook_id)]
        if not source_ids:
            raise EmptySourceSetError("An Audio Overview needs at least one source")

        audio_options = [
            None,
            [focus_prompt, length_code, None, [[sid] for sid in source_ids], language, None, format_code],
        ]
        params = [
            [2],
            notebook_id,
            [None, None, constants.STUDIO_TYPE_AUDIO, [[[sid]] for sid in source_ids], None, None, audio_options],
        ]
        result = self._call_rpc(self.RPC_CREATE_STUDIO, params, f"/notebook/{notebook_id}")

        artifact = result[0] if isinstance(result, list) and result else None
        if not isinstance(artifact, list) or not artifact or not isinstance(artifact[0], str):
            raise RemoteServiceError("create_studio: unexpected response shape")

        return AsyncTask(
            task_id=artifact[0],
            kind=TaskKind.STUDIO,
            notebook_id=notebook_id,
            status=studio_status(artifact[4] if len(artifact) > 4 else None),
            result={
                "type": "audio",
                "format": constants.AUDIO_FORMATS.get_name(format_code),
                "length": constants.AUDIO_LENGTHS.get_name(length_code),
                "language": language,
            },
        )

    def poll_studio_status(self, notebook_id: str) -> list[AsyncTask]:
        """Return the status of every studio artifact in a notebook (may be empty)."""
        params = [[2], notebook_id, 'NOT artifact.status = "ARTIFACT_STATUS_SUGGESTED"']
        result = self._call_rpc(self.RPC_POLL_STUDIO, params, f"/notebook/{notebook_id}")

        artifacts = []
        if not result or not isinstance(result, list):
            return artifacts

        artifact_list = result[0] if isinstance(result[0], list) else result
        for artifact_data in artifact_list:
            if not isinstance(artifact_data, list) or len(artifact_data) < 5:
                continue
            if not isinstance(artifact_data[0], str):
                continue

            type_code = artifact_data[2]
            record: dict[str, Any] = {
                "title": artifact_data[1] if isinstance(artifact_data[1], str) else "",
                "type": constants.STUDIO_TYPES.get_name(type_code),
                "created_at": None,
            }

            # Audio URL at [6][3], video URL at [8][3]
            if type_code == constants.STUDIO_TYPE_AUDIO and len(artifact_data) > 6:
                options = artifact_data[6]
                if isinstance(options, list) and len(options) > 3 and isinstance(options[3], str):
                    record["audio_url"] = options[3]
            if type_code == constants.STUDIO_TYPE_VIDEO and len(artifact_data) > 8:
                options = artifact_data[8]
                if isinstance(options, list) and len(options) > 3 and isinstance(options[3], str):
                    record["video_url"] = options[3]

            # created_at position varies by type
            for ts_pos in (10, 15, 17):
                if len(artifact_data) > ts_pos:
                    candidate = artifact_data[ts_pos]
                    if (isinstance(candidate, list) and len(candidate) >= 2
                            and isinstance(candidate[0], (int, float)) and candidate[0] > 1700000000):
                        record["created_at"] = parse_timestamp(candidate)
                        break

            artifacts.append(AsyncTask(
                task_id=artifact_data[0],
                kind=TaskKind.STUDIO,
                notebook_id=notebook_id,
                status=studio_status(artifact_data[4]),
                result=record,
            ))

        return artifacts

    # =========================================================================
    # Mind maps
    # =========================================================================

    def generate_mind_map(self, source_ids: list[str], notebook_id: str | None = None) -> dict[str, Any]:
        """Generate a mind map from sources of one notebook.

        Args:
            source_ids: Source UUIDs (at least one)
            notebook_id: If given, every source id is checked against it first

        Returns:
            Dict with mind_map (parsed graph), mind_map_json, generation_id, source_ids
        """
        source_ids = list(dict.fromkeys(sid for sid in source_ids if sid))
        if not source_ids:
            raise EmptySourceSetError("generate_mind_map needs at least one source id")

        if notebook_id is not None:
            known = {s.id for s in self.get_notebook_sources(notebook_id)}
            foreign = [sid for sid in source_ids if sid not in known]
            if foreign:
                raise NotFoundError(f"Sources not in notebook {notebook_id}: {', '.join(foreign)}")

        params = [
            [[[sid]] for sid in source_ids],
            None, None, None, None,
            ["interactive_mindmap", [["[CONTEXT]", ""]], ""],
            None,
            [2, None, [1]],
        ]
        result = self._call_rpc(self.RPC_GENERATE_MIND_MAP, params)

        # [[json_string, null, [generation_id]]]
        inner = result[0] if isinstance(result, list) and result and isinstance(result[0], list) else result
        if not isinstance(inner, list) or not inner or not isinstance(inner[0], str):
            raise RemoteServiceError("generate_mind_map: unexpected response shape")

        mind_map_json = inner[0]
        try:
            mind_map = json.loads(mind_map_json)
        except json.JSONDecodeError as e:
            raise RemoteServiceError("generate_mind_map: mind map payload is not JSON") from e

        generation_info = inner[2] if len(inner) > 2 else None
        generation_id = generation_info[0] if isinstance(generation_info, list) and generation_info else None

        return {
            "mind_map": mind_map,
            "mind_map_json": mind_map_json,
            "generation_id": generation_id,
            "source_ids": source_ids,
        }

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            self._client.close()
            self._client = None
