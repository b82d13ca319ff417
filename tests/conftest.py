"""Pytest configuration and shared fixtures."""

import pytest
import respx

from trakt_mcp_server.config import BASE_URL, TraktConfig
from trakt_mcp_server.server import MCPServer
from trakt_mcp_server.tools import register_tools
from trakt_mcp_server.trakt_client import TraktClient


@pytest.fixture
def trakt_config():
    """Fully credentialed Trakt configuration."""
    return TraktConfig(
        client_id="test-client-id",
        client_secret="test-client-secret",
        access_token="test-access-token",
    )


@pytest.fixture
def client(trakt_config):
    """Trakt client pointed at the mocked API."""
    return TraktClient(trakt_config)


@pytest.fixture
def anonymous_client():
    """Trakt client with a client id but no access token."""
    return TraktClient(TraktConfig(client_id="test-client-id", client_secret="test-client-secret"))


@pytest.fixture
def trakt_api():
    """Mock the Trakt HTTP API. Unmatched requests fail the test."""
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def server(client):
    """MCP server with the Trakt tools registered."""
    server = MCPServer()
    register_tools(server, client)
    return server


@pytest.fixture
def sample_initialize_request():
    """Sample initialize request for testing."""
    return {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "initialize",
        "params": {
            "protocolVersion": "2024-11-05",
            "capabilities": {},
            "clientInfo": {"name": "test-client", "version": "1.0.0"}
        }
    }


@pytest.fixture
def sample_tool_call_request():
    """Sample tool call request for testing."""
    return {
        "jsonrpc": "2.0",
        "id": 2,
        "method": "tools/call",
        "params": {
            "name": "search_show",
            "arguments": {"query": "Breaking Bad"}
        }
    }


def show_result(title, year, trakt_id, score=100.0):
    """Search hit for a show, shaped like the Trakt search endpoint."""
    return {
        "type": "show",
        "score": score,
        "show": {"title": title, "year": year, "ids": {"trakt": trakt_id, "slug": title.lower().replace(" ", "-")}}
    }


def movie_result(title, year, trakt_id, score=100.0):
    """Search hit for a movie, shaped like the Trakt search endpoint."""
    return {
        "type": "movie",
        "score": score,
        "movie": {"title": title, "year": year, "ids": {"trakt": trakt_id, "slug": title.lower().replace(" ", "-")}}
    }


def sync_response(added_movies=0, added_episodes=0, existing_movies=0, existing_episodes=0):
    """Body of a /sync/history response."""
    return {
        "added": {"movies": added_movies, "episodes": added_episodes},
        "existing": {"movies": existing_movies, "episodes": existing_episodes},
        "not_found": {"movies": [], "shows": [], "episodes": []}
    }
