import json
from unittest.mock import MagicMock

import httpx
import pytest

from notebooklm_bridge.api_client import NotebookLMClient

COOKIES = "SID=test_sid; HSID=h; SSID=s; APISID=a; SAPISID=sa"

BATCH_URL = "https://notebooklm.google.com/_/LabsTailwindUi/data/batchexecute"


def make_rpc_response(rpc_id, result, status_code=200):
    """Wrap a result the way batchexecute does: prefix, byte count, JSON chunk."""
    chunk = json.dumps([["wrb.fr", rpc_id, json.dumps(result), None, None, None, "generic"]])
    text = f")]}}'\n{len(chunk)}\n{chunk}\n"
    return httpx.Response(status_code, request=httpx.Request("POST", BATCH_URL), text=text)


def make_rpc_error(rpc_id, code):
    chunk = json.dumps([["wrb.fr", rpc_id, None, None, None, [code], "generic"]])
    text = f")]}}'\n{len(chunk)}\n{chunk}\n"
    return httpx.Response(200, request=httpx.Request("POST", BATCH_URL), text=text)


@pytest.fixture
def mock_client():
    """A client whose session is already bootstrapped."""
    client = NotebookLMClient(cookies=COOKIES)
    client.session.csrf_token = "csrf_token_value"
    client.session.session_id = "1234567890"
    client.session.initialized = True
    return client


@pytest.fixture
def http_client(mock_client, monkeypatch):
    """The httpx.Client used for RPCs, replaced by a mock."""
    http = MagicMock(spec=httpx.Client)
    monkeypatch.setattr(mock_client, "_get_client", lambda: http)
    return http
