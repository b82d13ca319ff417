"""Trakt tools exposed over MCP.

Each handler receives the raw ``arguments`` value of a ``tools/call``
request, validates it, calls the Trakt client and renders Markdown-flavoured
text for the assistant host. Validation failures and Trakt failures come back
as error-flagged results rather than exceptions.
"""

import json
import re
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Awaitable, Callable, List, Optional, Tuple, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .logging_config import get_logger
from .models import CallToolResult, Tool, error_result, text_result
from .trakt_client import TraktAPIError, TraktClient, TraktError
from .trakt_models import Episode, EpisodeIDs, Movie, MovieIDs, SearchResult, Show, SyncResponse, WatchedItem

if TYPE_CHECKING:
    from .server import MCPServer


ToolHandler = Callable[[Any], Awaitable[CallToolResult]]

# A top search hit scoring at least this much is trusted even when other
# results exist.
HIGH_CONFIDENCE_SCORE = 1000
MAX_SEARCH_RESULTS = 10
MAX_CANDIDATES = 5
DEFAULT_HISTORY_LIMIT = 10

# pydantic also takes Unix timestamps for datetimes; require a calendar date
ISO_DATE_PREFIX = re.compile(r"\d{4}-\d{2}-\d{2}")

NOT_AUTHENTICATED = "Error: Not authenticated. Use the authenticate tool first."
NOT_CONFIGURED = "Error: TRAKT_CLIENT_ID and TRAKT_CLIENT_SECRET environment variables must be set"

logger = get_logger("trakt_tools")

A = TypeVar("A", bound=BaseModel)


class ToolArguments(BaseModel):
    model_config = ConfigDict(extra="ignore")


class SearchArgs(ToolArguments):
    query: str = ""
    type: str = ""


class HistoryArgs(ToolArguments):
    type: str = ""
    limit: int = Field(0, strict=True)


class LogWatchArgs(ToolArguments):
    type: str = ""
    showName: str = ""
    season: int = Field(0, strict=True)
    episode: int = Field(0, strict=True)
    movieName: str = ""
    watchedAt: str = ""


class ArgumentError(ValueError):
    """Arguments could not be decoded into the tool's argument model."""
    pass


def parse_arguments(raw: Any, model: Type[A]) -> A:
    """Decode raw tool arguments (dict, JSON text or None) into ``model``."""
    if raw is None:
        raw = {}
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str):
        if not raw.strip():
            raw = {}
        else:
            try:
                raw = json.loads(raw)
            except json.JSONDecodeError as e:
                raise ArgumentError(f"invalid arguments: {e}") from e
    if not isinstance(raw, dict):
        raise ArgumentError(f"invalid arguments: expected an object, got {type(raw).__name__}")
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ArgumentError(f"invalid arguments: {details}") from e


def validate_watched_at(value: str) -> None:
    """Reject ``watchedAt`` values that are not ISO-8601 dates or datetimes."""
    if not ISO_DATE_PREFIX.match(value):
        raise ArgumentError(f"watchedAt must be an ISO 8601 date or datetime, got: {value}")
    try:
        TypeAdapter(Union[datetime, date]).validate_python(value)
    except ValidationError as e:
        raise ArgumentError(
            f"watchedAt must be an ISO 8601 date or datetime, got: {value}"
        ) from e


def _year(year: Optional[int]) -> str:
    return str(year) if year else "?"


def _search_line(result: SearchResult) -> Optional[str]:
    if result.type == "show" and result.show is not None:
        show = result.show
        return f"📺 **{show.title}** ({_year(show.year)}) - Trakt ID: {show.ids.trakt}"
    if result.type == "movie" and result.movie is not None:
        movie = result.movie
        return f"🎬 **{movie.title}** ({_year(movie.year)}) - Trakt ID: {movie.ids.trakt}"
    return None


def _candidate_line(result: SearchResult) -> str:
    item = result.show if result.show is not None else result.movie
    if item is None:
        return f"- (unknown {result.type or 'item'})"
    return f"- {item.title} ({_year(item.year)}) - Trakt ID: {item.ids.trakt}"


def resolve_match(results: List[SearchResult], kind: str, query: str) -> Tuple[Optional[SearchResult], Optional[str]]:
    """Pick the authoritative search hit or explain why there is none.

    Returns ``(result, None)`` on success and ``(None, message)`` when nothing
    matched or the match is ambiguous. ``kind`` is "show" or "movie".
    """
    results = [r for r in results if getattr(r, kind) is not None]
    if not results:
        return None, f"No {kind} found matching: {query}"

    top = results[0]
    if len(results) > 1 and top.score < HIGH_CONFIDENCE_SCORE:
        lines = [f'Multiple {kind}s found for "{query}". Please be more specific:', ""]
        for candidate in results[:MAX_CANDIDATES]:
            lines.append(_candidate_line(candidate))
        if len(results) > MAX_CANDIDATES:
            lines.append(f"... and {len(results) - MAX_CANDIDATES} more")
        lines.append("")
        lines.append("Refine the name (for example add the year) and try again.")
        return None, "\n".join(lines)

    return top, None


def register_tools(server: "MCPServer", client: TraktClient) -> None:
    """Register all Trakt tools with the MCP server."""
    server.register_tool(
        Tool(
            name="authenticate",
            description="Authenticate with Trakt.tv using OAuth device flow. Returns a verification URL and code for the user to authorize.",
            inputSchema={
                "type": "object",
                "properties": {},
            }
        ),
        make_authenticate_handler(client)
    )
    server.register_tool(
        Tool(
            name="search_show",
            description="Search for TV shows, movies, or anime by title. Returns matching content with IDs and metadata.",
            inputSchema={
                "type": "object",
                "properties": {
                    "query": {
                        "type": "string",
                        "description": "Search query (title or keywords)"
                    },
                    "type": {
                        "type": "string",
                        "description": "Content type filter (optional)",
                        "enum": ["show", "movie"]
                    }
                },
                "required": ["query"]
            }
        ),
        make_search_handler(client)
    )
    server.register_tool(
        Tool(
            name="get_history",
            description="Retrieve watch history with optional filters. Supports content type filtering.",
            inputSchema={
                "type": "object",
                "properties": {
                    "type": {
                        "type": "string",
                        "description": "Filter by content type (optional)",
                        "enum": ["shows", "movies"]
                    },
                    "limit": {
                        "type": "number",
                        "description": "Maximum number of items to return (default 10)"
                    }
                }
            }
        ),
        make_get_history_handler(client)
    )
    server.register_tool(
        Tool(
            name="log_watch",
            description="Log a single episode or movie as watched. Accepts ISO 8601 dates. If no date provided, uses current time.",
            inputSchema={
                "type": "object",
                "properties": {
                    "type": {
                        "type": "string",
                        "description": "Content type",
                        "enum": ["episode", "movie"]
                    },
                    "showName": {
                        "type": "string",
                        "description": "Show name (required for episodes)"
                    },
                    "season": {
                        "type": "number",
                        "description": "Season number (required for episodes, 0 for specials)"
                    },
                    "episode": {
                        "type": "number",
                        "description": "Episode number (required for episodes)"
                    },
                    "movieName": {
                        "type": "string",
                        "description": "Movie name (required for movies)"
                    },
                    "watchedAt": {
                        "type": "string",
                        "description": "When it was watched. ISO 8601 format"
                    }
                },
                "required": ["type"]
            }
        ),
        make_log_watch_handler(client)
    )


def make_authenticate_handler(client: TraktClient) -> ToolHandler:
    async def handle(arguments: Any) -> CallToolResult:
        if not client.is_configured:
            return error_result(NOT_CONFIGURED)

        try:
            code = await client.get_device_code()
        except TraktError as e:
            return error_result(str(e))

        logger.info(f"device code issued expires_in={code.expires_in}")
        return text_result(
            "🔐 **Trakt Authentication**\n"
            "\n"
            f"Please visit: {code.verification_url}\n"
            f"Enter code: **{code.user_code}**\n"
            "\n"
            f"The code expires in {code.expires_in} seconds.\n"
            "\n"
            "After authorizing, the access token will be displayed. "
            "Set it as TRAKT_ACCESS_TOKEN environment variable."
        )

    return handle


def make_search_handler(client: TraktClient) -> ToolHandler:
    async def handle(arguments: Any) -> CallToolResult:
        try:
            args = parse_arguments(arguments, SearchArgs)
        except ArgumentError as e:
            return error_result(f"Error: {e}")

        if not args.query:
            return error_result("Error: query is required")

        try:
            results = await client.search(args.query, args.type)
        except TraktError as e:
            return error_result(str(e))

        if not results:
            return text_result(f"No results found for: {args.query}")

        lines = []
        for result in results[:MAX_SEARCH_RESULTS]:
            line = _search_line(result)
            if line is not None:
                lines.append(line)
        if len(results) > MAX_SEARCH_RESULTS:
            lines.append(f"\n... and {len(results) - MAX_SEARCH_RESULTS} more results")

        return text_result("\n".join(lines) + "\n")

    return handle


def make_get_history_handler(client: TraktClient) -> ToolHandler:
    async def handle(arguments: Any) -> CallToolResult:
        if not client.is_authenticated:
            return error_result(NOT_AUTHENTICATED)

        try:
            args = parse_arguments(arguments, HistoryArgs)
        except ArgumentError as e:
            return error_result(f"Error: {e}")

        limit = args.limit if args.limit > 0 else DEFAULT_HISTORY_LIMIT

        try:
            history = await client.get_history(args.type, limit)
        except TraktError as e:
            return error_result(str(e))

        if not history:
            return text_result("No watch history found.")

        lines = []
        for item in history:
            watched = item.watched_at.strftime("%Y-%m-%d") if item.watched_at else "unknown date"
            if item.type == "episode":
                if item.show is None or item.episode is None:
                    continue
                lines.append(
                    f"📺 {item.show.title} S{item.episode.season:02d}E{item.episode.number:02d}"
                    f" - {item.episode.title or ''} ({watched})"
                )
            elif item.type == "movie":
                if item.movie is None:
                    continue
                lines.append(f"🎬 {item.movie.title} ({watched})")

        return text_result("\n".join(lines) + "\n")

    return handle


def make_log_watch_handler(client: TraktClient) -> ToolHandler:
    async def handle(arguments: Any) -> CallToolResult:
        if not client.is_authenticated:
            return error_result(NOT_AUTHENTICATED)

        try:
            args = parse_arguments(arguments, LogWatchArgs)
            if args.watchedAt:
                validate_watched_at(args.watchedAt)
        except ArgumentError as e:
            return error_result(f"Error: {e}")

        try:
            if args.type == "episode":
                return await _log_episode(client, args)
            if args.type == "movie":
                return await _log_movie(client, args)
        except TraktError as e:
            return error_result(str(e))

        return error_result("Error: type must be 'episode' or 'movie'")

    return handle


async def _log_episode(client: TraktClient, args: LogWatchArgs) -> CallToolResult:
    if not args.showName:
        return error_result("Error: showName is required for episodes")
    if args.season < 0:
        return error_result("Error: season must be 0 or greater (0 = specials)")
    if args.episode <= 0:
        return error_result("Error: episode must be greater than 0")

    results = await client.search(args.showName, "show")
    match, problem = resolve_match(results, "show", args.showName)
    if problem is not None:
        return error_result(problem)
    show: Show = match.show

    label = f"S{args.season:02d}E{args.episode:02d}"
    try:
        episode = await client.get_episode(str(show.ids.trakt), args.season, args.episode)
    except TraktAPIError as e:
        if e.is_not_found:
            return error_result(f"Episode {label} not found for {show.title}")
        raise

    item = _watched_item(args.watchedAt, episodes=[Episode(ids=EpisodeIDs(trakt=episode.ids.trakt))])

    logger.info(f"logging episode show={show.ids.trakt} episode={episode.ids.trakt}")
    response = await client.add_to_history(item)

    description = f'**{show.title}** {label} - "{episode.title or ""}"'
    return _render_sync(response, "episodes", description)


async def _log_movie(client: TraktClient, args: LogWatchArgs) -> CallToolResult:
    if not args.movieName:
        return error_result("Error: movieName is required for movies")

    results = await client.search(args.movieName, "movie")
    match, problem = resolve_match(results, "movie", args.movieName)
    if problem is not None:
        return error_result(problem)
    movie: Movie = match.movie

    item = _watched_item(args.watchedAt, movies=[Movie(ids=MovieIDs(trakt=movie.ids.trakt))])

    logger.info(f"logging movie movie={movie.ids.trakt}")
    response = await client.add_to_history(item)

    description = f"**{movie.title}** ({_year(movie.year)})"
    return _render_sync(response, "movies", description)


def _watched_item(watched_at: str, **batch: Any) -> WatchedItem:
    # Empty watched_at is left out so Trakt records the current time.
    if watched_at:
        batch["watched_at"] = watched_at
    return WatchedItem(**batch)


def _render_sync(response: SyncResponse, field: str, description: str) -> CallToolResult:
    if getattr(response.added, field) > 0:
        return text_result(f"✅ Logged {description} as watched.")
    if getattr(response.existing, field) > 0:
        return text_result(f"ℹ️ Already watched: {description} is already in your history.")
    return text_result(
        f"⚠️ Trakt did not record {description}: nothing was added and it was not already in your history."
    )
