"""NotebookLM bridge MCP server."""

import argparse
import functools
import json
import logging
import os
import secrets
import sys
from typing import Any

from fastmcp import FastMCP
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from . import __version__
from .api_client import NotebookLMClient
from .auth import get_saved_cookies
from .errors import NotebookLMError, SessionExpiredError
from .polling import wait_for_task

# MCP request/response logger
mcp_logger = logging.getLogger("notebooklm_bridge.mcp")

# Initialize MCP server
mcp = FastMCP(
    name="notebooklm",
    instructions="""NotebookLM bridge - Access NotebookLM (notebooklm.google.com).

**Auth:** If you get authentication errors, run `notebooklm-bridge-auth` in a terminal, then call refresh_auth.
**Confirmation:** Tools with a confirm param require user approval before setting confirm=True.
**Async jobs:** research_start and audio_overview_create return immediately; follow them with research_status / studio_status.""",
)


# Health check endpoint for load balancers and monitoring
@mcp.custom_route("/health", methods=["GET"])
async def health_check(request: Request) -> JSONResponse:
    return JSONResponse({
        "status": "healthy",
        "service": "notebooklm-bridge",
        "version": __version__,
    })


# Global state
_client: NotebookLMClient | None = None
_query_timeout: float = float(os.environ.get("NOTEBOOKLM_QUERY_TIMEOUT", "120.0"))
_api_key: str | None = os.environ.get("NOTEBOOKLM_API_KEY")


def validate_api_key(request: Request) -> JSONResponse | None:
    """Validate API key from Authorization header.

    Returns None if auth passes, JSONResponse with error if auth fails.
    """
    if not _api_key:
        return None

    # Allow health check without auth (for load balancers)
    if request.url.path == "/health":
        return None

    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return JSONResponse(
            {"error": "Missing or invalid Authorization header. Use 'Bearer <api_key>'"},
            status_code=401,
        )

    provided_key = auth_header[len("Bearer "):]
    if not secrets.compare_digest(provided_key, _api_key):
        return JSONResponse({"error": "Invalid API key"}, status_code=401)

    return None


class APIKeyAuthMiddleware(BaseHTTPMiddleware):
    """Middleware to enforce API key authentication for HTTP transport."""

    async def dispatch(self, request: Request, call_next):
        auth_error = validate_api_key(request)
        if auth_error:
            return auth_error
        return await call_next(request)


def logged_tool():
    """Decorator that combines @mcp.tool() with MCP request/response logging."""
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            tool_name = func.__name__
            if mcp_logger.isEnabledFor(logging.DEBUG):
                params = {k: v for k, v in kwargs.items() if v is not None}
                mcp_logger.debug(f"MCP Request: {tool_name}({json.dumps(params, default=str)})")

            result = func(*args, **kwargs)

            if mcp_logger.isEnabledFor(logging.DEBUG):
                result_str = json.dumps(result, default=str)
                if len(result_str) > 1000:
                    result_str = result_str[:1000] + "..."
                mcp_logger.debug(f"MCP Response: {tool_name} -> {result_str}")

            return result
        return mcp.tool()(wrapper)
    return decorator


def error_response(error: Exception) -> dict[str, Any]:
    response = {
        "status": "error",
        "error": str(error),
        "error_type": error.__class__.__name__,
    }
    if isinstance(error, SessionExpiredError):
        response["hint"] = "Run `notebooklm-bridge-auth`, then call refresh_auth."
    return response


def notebook_url(notebook_id: str) -> str:
    return f"https://notebooklm.google.com/notebook/{notebook_id}"


def get_client() -> NotebookLMClient:
    """Get or create the API client.

    Cookies come from NOTEBOOKLM_COOKIES if set, else from the saved session.
    """
    global _client
    if _client is None:
        _client = NotebookLMClient(cookies=get_saved_cookies())
    return _client


def reset_client() -> None:
    global _client
    if _client is not None:
        _client.close()
    _client = None


@logged_tool()
def refresh_auth() -> dict[str, Any]:
    """Reload the saved session from disk and re-bootstrap.

    Call this after running notebooklm-bridge-auth to pick up a new login.
    """
    reset_client()
    try:
        get_client().ensure_session()
        return {
            "status": "success",
            "message": "Session reloaded from disk.",
        }
    except NotebookLMError as e:
        return error_response(e)


@logged_tool()
def notebook_list(max_results: int = 100) -> dict[str, Any]:
    """List all notebooks.

    Args:
        max_results: Maximum number of notebooks to return (default: 100)
    """
    try:
        notebooks = get_client().list_notebooks()
    except NotebookLMError as e:
        return error_response(e)

    owned_count = sum(1 for nb in notebooks if nb.is_owned)
    return {
        "status": "success",
        "count": len(notebooks),
        "owned_count": owned_count,
        "shared_count": len(notebooks) - owned_count,
        "notebooks": [
            {
                "id": nb.id,
                "title": nb.title,
                "source_count": nb.source_count,
                "url": nb.url,
                "ownership": nb.ownership,
                "is_shared": nb.is_shared,
                "created_at": nb.created_at,
                "modified_at": nb.modified_at,
            }
            for nb in notebooks[:max_results]
        ],
    }


@logged_tool()
def notebook_create(title: str = "") -> dict[str, Any]:
    """Create a new notebook.

    Args:
        title: Optional title (default: current date and time)
    """
    try:
        notebook_id = get_client().create_notebook(title=title or None)
    except NotebookLMError as e:
        return error_response(e)
    return {
        "status": "success",
        "notebook": {"id": notebook_id, "url": notebook_url(notebook_id)},
    }


@logged_tool()
def notebook_delete(
    notebook_id: str,
    confirm: bool = False,
) -> dict[str, Any]:
    """Delete notebook permanently. IRREVERSIBLE. Requires confirm=True.

    Args:
        notebook_id: Notebook UUID
        confirm: Must be True after user approval
    """
    if not confirm:
        return {
            "status": "error",
            "error": "Deletion not confirmed. You must ask the user to confirm "
                     "before deleting. Set confirm=True only after user approval.",
            "warning": "This action is IRREVERSIBLE. The notebook and all its "
                       "sources will be permanently deleted.",
        }

    try:
        get_client().delete_notebook(notebook_id)
    except NotebookLMError as e:
        return error_response(e)
    return {
        "status": "success",
        "message": f"Notebook {notebook_id} has been permanently deleted.",
    }


@logged_tool()
def notebook_add_text(
    notebook_id: str,
    text: str,
    title: str = "Pasted Text",
) -> dict[str, Any]:
    """Add pasted text as source.

    Args:
        notebook_id: Notebook UUID
        text: Text content to add
        title: Optional title
    """
    try:
        source_id = get_client().add_text_source(notebook_id, title=title, text=text)
    except (NotebookLMError, ValueError) as e:
        return error_response(e)
    return {"status": "success", "source": {"id": source_id, "title": title}}


@logged_tool()
def notebook_add_url(notebook_id: str, url: str) -> dict[str, Any]:
    """Add URL (website or YouTube) as source.

    Args:
        notebook_id: Notebook UUID
        url: URL to add
    """
    try:
        source_id = get_client().add_url_source(notebook_id, url=url)
    except (NotebookLMError, ValueError) as e:
        return error_response(e)
    return {"status": "success", "source": {"id": source_id, "url": url.strip()}}


@logged_tool()
def notebook_query(
    notebook_id: str,
    query: str,
    source_ids: list[str] | str | None = None,
    conversation_id: str | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Ask AI about EXISTING sources already in notebook. NOT for finding new sources.

    Use research_start instead to find new sources on the web or in Drive.

    Args:
        notebook_id: Notebook UUID
        query: Question to ask
        source_ids: Source IDs to query (default: all)
        conversation_id: For follow-up questions
        timeout: Request timeout in seconds (default: NOTEBOOKLM_QUERY_TIMEOUT or 120)
    """
    # Some AI clients send source_ids as a JSON string instead of a list
    if isinstance(source_ids, str):
        try:
            source_ids = json.loads(source_ids)
        except json.JSONDecodeError:
            source_ids = [source_ids]

    try:
        result = get_client().query(
            notebook_id,
            query_text=query,
            source_ids=source_ids,
            conversation_id=conversation_id,
            timeout=timeout if timeout is not None else _query_timeout,
        )
    except (NotebookLMError, ValueError) as e:
        return error_response(e)
    return {"status": "success", **result}


@logged_tool()
def research_start(
    notebook_id: str,
    query: str,
    source: str = "web",
    mode: str = "fast",
) -> dict[str, Any]:
    """Search the web or Google Drive to FIND NEW sources for a notebook.

    Workflow: research_start -> research_status until completed.

    Args:
        notebook_id: Notebook UUID
        query: What to search for (e.g. "quantum computing advances")
        source: web|drive
        mode: fast (~30s, ~10 sources) | deep (~5min, ~40 sources, web only)
    """
    try:
        task = get_client().start_research(notebook_id, query=query, source=source, mode=mode)
    except (NotebookLMError, ValueError) as e:
        return error_response(e)

    duration = "3-5 minutes" if task.result.get("mode") == "deep" else "about 30 seconds"
    return {
        "status": "success",
        "research": task.to_dict(),
        "notebook_url": notebook_url(notebook_id),
        "message": f"Research started. This takes {duration}. Call research_status to check progress.",
    }


def _compact_research_result(result: dict) -> dict:
    """Truncate the report to 500 chars and list at most 10 sources."""
    report = result.get("report")
    if report and len(report) > 500:
        result["report"] = report[:500] + f"\n\n... (truncated {len(report) - 500} characters)"

    sources = result.get("sources")
    if isinstance(sources, list) and len(sources) > 10:
        result["sources"] = sources[:10]
        result["sources_truncated"] = f"Showing first 10 of {len(sources)} sources. Set compact=False for all."
    return result


@logged_tool()
def research_status(
    notebook_id: str,
    poll_interval: int = 30,
    max_wait: int = 300,
    compact: bool = True,
    task_id: str | None = None,
) -> dict[str, Any]:
    """Poll research progress, waiting up to max_wait seconds for completion.

    Args:
        notebook_id: Notebook UUID
        poll_interval: Seconds between polls (default: 30)
        max_wait: Max seconds to wait (default: 300, 0=single poll)
        compact: Truncate report and limit sources shown (default: True)
        task_id: Follow a specific research task
    """
    try:
        client = get_client()
        task, polls = wait_for_task(
            lambda: client.poll_research(notebook_id, task_id=task_id),
            poll_interval=poll_interval,
            max_wait=max_wait,
        )
    except NotebookLMError as e:
        return error_response(e)

    research = task.to_dict()
    research["polls_made"] = polls
    if not task.is_terminal:
        research["message"] = "Research still in progress. Call research_status again to continue waiting."
    if compact:
        research = _compact_research_result(research)
    return {"status": "success", "research": research}


@logged_tool()
def audio_overview_create(
    notebook_id: str,
    source_ids: list[str] | None = None,
    format: str = "deep_dive",
    length: str = "default",
    language: str = "en",
    focus_prompt: str = "",
    confirm: bool = False,
) -> dict[str, Any]:
    """Generate audio overview. Requires confirm=True after user approval.

    Args:
        notebook_id: Notebook UUID
        source_ids: Source IDs (default: all)
        format: deep_dive|brief|critique|debate
        length: short|default|long
        language: BCP-47 code (en, es, fr, de, ja)
        focus_prompt: Optional focus text
        confirm: Must be True after user approval
    """
    if not confirm:
        return {
            "status": "pending_confirmation",
            "message": "Please confirm these settings before creating the audio overview:",
            "settings": {
                "notebook_id": notebook_id,
                "format": format,
                "length": length,
                "language": language,
                "focus_prompt": focus_prompt or "(none)",
                "source_ids": source_ids or "all sources",
            },
            "note": "Set confirm=True after user approves these settings.",
        }

    try:
        task = get_client().create_audio_overview(
            notebook_id,
            source_ids=source_ids,
            format=format,
            length=length,
            language=language,
            focus_prompt=focus_prompt,
        )
    except (NotebookLMError, ValueError) as e:
        return error_response(e)
    return {
        "status": "success",
        "artifact": task.to_dict(),
        "message": "Audio generation started. Use studio_status to check progress.",
        "notebook_url": notebook_url(notebook_id),
    }


@logged_tool()
def studio_status(notebook_id: str) -> dict[str, Any]:
    """Check studio content generation status and get URLs.

    Args:
        notebook_id: Notebook UUID
    """
    try:
        artifacts = get_client().poll_studio_status(notebook_id)
    except NotebookLMError as e:
        return error_response(e)

    completed = [a for a in artifacts if a.status.value == "completed"]
    failed = [a for a in artifacts if a.status.value == "failed"]
    return {
        "status": "success",
        "notebook_id": notebook_id,
        "summary": {
            "total": len(artifacts),
            "completed": len(completed),
            "failed": len(failed),
            "in_progress": len(artifacts) - len(completed) - len(failed),
        },
        "artifacts": [a.to_dict() for a in artifacts],
        "notebook_url": notebook_url(notebook_id),
    }


@logged_tool()
def mind_map_create(
    notebook_id: str,
    source_ids: list[str] | None = None,
) -> dict[str, Any]:
    """Generate a mind map from notebook sources.

    Args:
        notebook_id: Notebook UUID
        source_ids: Source IDs (default: all)
    """
    try:
        client = get_client()
        if source_ids is None:
            source_ids = [s.id for s in client.get_notebook_sources(notebook_id)]
            result = client.generate_mind_map(source_ids)
        else:
            result = client.generate_mind_map(source_ids, notebook_id=notebook_id)
    except (NotebookLMError, ValueError) as e:
        return error_response(e)

    return {
        "status": "success",
        "mind_map": result["mind_map"],
        "generation_id": result["generation_id"],
        "source_ids": result["source_ids"],
        "notebook_url": notebook_url(notebook_id),
    }


def configure_debug_logging() -> None:
    """Attach a DEBUG stream handler to the MCP and API loggers."""
    logging.basicConfig(
        level=logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    for name in ("notebooklm_bridge.mcp", "notebooklm_bridge.api", "notebooklm_bridge.auth"):
        logger = logging.getLogger(name)
        logger.setLevel(logging.DEBUG)
        logger.addHandler(handler)
        logger.propagate = False


def main():
    """Run the MCP server."""
    parser = argparse.ArgumentParser(
        description="NotebookLM bridge MCP server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
  NOTEBOOKLM_MCP_TRANSPORT     Transport type (stdio, http, sse)
  NOTEBOOKLM_MCP_HOST          Host to bind (default: 127.0.0.1)
  NOTEBOOKLM_MCP_PORT          Port to listen on (default: 8000)
  NOTEBOOKLM_MCP_PATH          MCP endpoint path (default: /mcp)
  NOTEBOOKLM_BRIDGE_DEBUG      Enable debug logging for MCP + API traffic (true/false)
  NOTEBOOKLM_QUERY_TIMEOUT     Query timeout in seconds (default: 120.0)
  NOTEBOOKLM_API_KEY           Bearer key required on HTTP/SSE requests
  NOTEBOOKLM_COOKIES           Cookie header, overrides the saved session

Examples:
  notebooklm-bridge                              # Default stdio transport
  notebooklm-bridge --transport http             # HTTP on localhost:8000
  notebooklm-bridge --transport http --port 3000 # HTTP on custom port
  notebooklm-bridge --debug                      # Log MCP calls + NotebookLM API traffic
""",
    )

    parser.add_argument(
        "--transport", "-t",
        choices=["stdio", "http", "sse"],
        default=os.environ.get("NOTEBOOKLM_MCP_TRANSPORT", "stdio"),
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--host", "-H",
        default=os.environ.get("NOTEBOOKLM_MCP_HOST", "127.0.0.1"),
        help="Host to bind for HTTP/SSE (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=int(os.environ.get("NOTEBOOKLM_MCP_PORT", "8000")),
        help="Port for HTTP/SSE transport (default: 8000)",
    )
    parser.add_argument(
        "--path",
        default=os.environ.get("NOTEBOOKLM_MCP_PATH", "/mcp"),
        help="MCP endpoint path for HTTP (default: /mcp)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=os.environ.get("NOTEBOOKLM_BRIDGE_DEBUG", "").lower() == "true",
        help="Enable debug logging (MCP tool calls + NotebookLM API requests/responses)",
    )
    parser.add_argument(
        "--query-timeout",
        type=float,
        default=float(os.environ.get("NOTEBOOKLM_QUERY_TIMEOUT", "120.0")),
        help="Query timeout in seconds (default: 120.0)",
    )
    parser.add_argument(
        "--api-key",
        default=os.environ.get("NOTEBOOKLM_API_KEY"),
        help="API key for HTTP/SSE authentication (also via NOTEBOOKLM_API_KEY)",
    )
    args = parser.parse_args()

    global _query_timeout, _api_key
    _query_timeout = args.query_timeout
    _api_key = args.api_key

    if args.debug:
        configure_debug_logging()
        print("Debug logging: ENABLED (MCP tool calls + NotebookLM API requests/responses)", file=sys.stderr)

    if args.transport == "stdio":
        # stdio must stay silent
        mcp.run()
        return 0

    print(f"Starting NotebookLM bridge ({args.transport.upper()}) on http://{args.host}:{args.port}")
    print(f"Health check: http://{args.host}:{args.port}/health")
    if not _api_key:
        print("WARNING: No API key set. Server is publicly accessible!")
        print("         Use --api-key or NOTEBOOKLM_API_KEY to secure your server.")
        if args.transport == "http":
            mcp.run(transport="http", host=args.host, port=args.port, path=args.path)
        else:
            mcp.run(transport="sse", host=args.host, port=args.port)
        return 0

    import uvicorn

    print("API key authentication: ENABLED")
    if args.transport == "http":
        base_app = mcp.http_app(path=args.path)
    else:
        base_app = mcp.http_app(transport="sse")
    uvicorn.run(APIKeyAuthMiddleware(base_app), host=args.host, port=args.port)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
