"""
Reconciliation service HTTP API.

Serves one entity source under a URL prefix (default /api):

    GET|POST {prefix}                  manifest, or answers `queries` / `extend`
    GET      {prefix}/auto/entities    entity suggest (prefix search)
    GET      {prefix}/auto/types       type suggest
    GET      {prefix}/auto/properties  property suggest
    GET      {prefix}/properties       properties of a type

Usage:
    recon-entity-db serve data/genes.sqlite          # Start on localhost:8222
    recon-entity-db serve genes.txt.gz --port 9000   # Custom port
"""

import json
import logging
import re
import sqlite3
import time
from typing import Any, Optional
from urllib.parse import parse_qs

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field, ValidationError
from fastapi.concurrency import run_in_threadpool

from .errors import MalformedQueryError, SourceUnavailableError
from .manifest import build_manifest
from .models import Property, QueryRequest
from .scoring import DEFAULT_LIMIT
from .source import EntitySource, get_source

logger = logging.getLogger(__name__)

DEFAULT_PORT = 8222
DEFAULT_PREFIX = "/api"
DEFAULT_PUBLIC_URL = f"http://127.0.0.1:{DEFAULT_PORT}"

_CALLBACK_PATTERN = re.compile(r"^[A-Za-z_$][\w$.]*$")

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class ExtendProperty(BaseModel):
    id: str
    # Accepted for protocol compatibility; extension ignores it
    settings: dict[str, Any] = Field(default_factory=dict)


class ExtendRequest(BaseModel):
    ids: list[str]
    properties: list[ExtendProperty] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Globals populated at startup
# ---------------------------------------------------------------------------

_source: Optional[EntitySource] = None
_source_location: Optional[str] = None
_public_url: str = DEFAULT_PUBLIC_URL


def configure(
    source_location: Optional[str] = None,
    public_url: Optional[str] = None,
    source: Optional[EntitySource] = None,
) -> None:
    """Set the source the server answers from (by location or instance)."""
    global _source, _source_location, _public_url
    if source_location is not None:
        _source_location = source_location
        _source = None
    if source is not None:
        _source = source
    if public_url is not None:
        _public_url = public_url.rstrip("/")


def _get_source() -> EntitySource:
    global _source
    if _source is None:
        if _source_location is None:
            raise SourceUnavailableError("No entity source configured")
        _source = get_source(_source_location)
    return _source


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _jsonp(request: Request, payload: Any) -> Response:
    """JSON response, wrapped in a JSONP callback when one is requested."""
    headers = {"Access-Control-Allow-Origin": "*"}
    callback = request.query_params.get("callback")
    if not callback:
        return JSONResponse(payload, headers=headers)
    if not _CALLBACK_PATTERN.match(callback):
        raise HTTPException(status_code=400, detail=f"Invalid callback name: {callback}")
    body = f"/**/{callback}({json.dumps(payload)});\n"
    return Response(content=body, media_type="application/javascript", headers=headers)


def _parse_json_param(name: str, raw: str) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON in '{name}': {e}") from e


def _all_properties(source: EntitySource) -> list[Property]:
    """Every property once, in type then declaration order."""
    seen: dict[str, Property] = {}
    for entity_type in sorted(source.types(), key=lambda t: t.id):
        for prop in source.properties_for(entity_type.id):
            seen.setdefault(prop.id, prop)
    return list(seen.values())


def _prefix_or_substring(items: list, prefix: str) -> list:
    """Items whose name starts with prefix; substring hits if there are none."""
    low = prefix.lower()
    hits = [item for item in items if item.name.lower().startswith(low)]
    if not hits:
        hits = [item for item in items if low in item.name.lower()]
    return hits


def answer_queries(queries: Any) -> dict[str, dict]:
    """Run a batch of reconciliation queries keyed by query id."""
    if not isinstance(queries, dict):
        raise HTTPException(status_code=400, detail="'queries' must be a JSON object")

    source = _get_source()
    results: dict[str, dict] = {}
    for query_id, raw in queries.items():
        try:
            request = QueryRequest.model_validate(raw)
        except ValidationError as e:
            raise HTTPException(status_code=400, detail=f"Invalid query '{query_id}': {e}") from e
        response = source.query(request.model_copy(update={"id": query_id}))
        results[response.id] = {"result": [c.model_dump(by_alias=True) for c in response.results]}
    return results


def answer_extend(raw: Any) -> dict[str, Any]:
    """Fetch requested property values for a list of entity ids."""
    try:
        extend = ExtendRequest.model_validate(raw)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid extend request: {e}") from e

    source = _get_source()
    names = {p.id: p.name for p in _all_properties(source)}
    requested = [p.id for p in extend.properties]

    rows: dict[str, dict[str, list[dict[str, str]]]] = {}
    for entity_id in extend.ids:
        entity = source.get_entity(entity_id)
        if entity is None:
            raise HTTPException(status_code=404, detail=f"entity not found: {entity_id}")
        rows[entity_id] = {
            prop_id: [{"str": entity.properties[prop_id]}]
            for prop_id in requested
            if prop_id in entity.properties
        }

    return {
        "meta": [{"id": prop_id, "name": names.get(prop_id, prop_id)} for prop_id in requested],
        "rows": rows,
    }


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------

router = APIRouter()


@router.api_route("", methods=["GET", "POST"])
async def reconcile(request: Request):
    """Manifest, reconciliation queries, or data extension."""
    params: dict[str, str] = dict(request.query_params)
    if request.method == "POST":
        body = (await request.body()).decode("utf-8")
        for key, values in parse_qs(body).items():
            params[key] = values[0]

    if params.get("queries"):
        t0 = time.time()
        queries = _parse_json_param("queries", params["queries"])
        payload = await run_in_threadpool(answer_queries, queries)
        logger.info(f"Answered {len(payload)} queries in {time.time() - t0:.3f}s")
        return _jsonp(request, payload)

    if params.get("extend"):
        raw = _parse_json_param("extend", params["extend"])
        payload = await run_in_threadpool(answer_extend, raw)
        return _jsonp(request, payload)

    source = await run_in_threadpool(_get_source)
    manifest = build_manifest(source, _public_url, request.app.state.prefix)
    return _jsonp(request, manifest.to_json())


@router.get("/auto/entities")
def suggest_entities(request: Request, prefix: str = ""):
    """Entity suggest: entities whose name or id starts with prefix."""
    entities = _get_source().query_prefix(prefix, DEFAULT_LIMIT)
    return _jsonp(request, {"result": [e.model_dump(by_alias=True) for e in entities]})


@router.get("/auto/types")
def suggest_types(request: Request, prefix: str = ""):
    """Type suggest by name prefix, falling back to substring."""
    types = sorted(_get_source().types(), key=lambda t: t.id)
    hits = _prefix_or_substring(types, prefix)
    return _jsonp(request, {"result": [t.model_dump() for t in hits]})


@router.get("/auto/properties")
def suggest_properties(request: Request, prefix: str = ""):
    """Property suggest by name prefix, falling back to substring."""
    hits = _prefix_or_substring(_all_properties(_get_source()), prefix)
    return _jsonp(request, {"result": [p.model_dump() for p in hits]})


@router.get("/properties")
def propose_properties(request: Request, type: str = "", limit: Optional[str] = None):
    """Properties declared for a type, optionally capped."""
    max_results = 0
    if limit:
        try:
            max_results = int(limit)
        except ValueError:
            max_results = 0
    properties = _get_source().properties_for(type)
    if max_results > 0:
        properties = properties[:max_results]
    return _jsonp(request, {
        "limit": max_results,
        "type": type,
        "properties": [p.model_dump() for p in properties],
    })


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------


def _malformed_query_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.warning(f"Rejected query: {exc}")
    return JSONResponse({"detail": str(exc)}, status_code=400)


def _source_unavailable_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Source unavailable: {exc}")
    return JSONResponse({"detail": str(exc)}, status_code=503)


def _database_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(f"Database error: {exc}")
    return JSONResponse({"detail": str(exc)}, status_code=500)


def create_app(prefix: str = DEFAULT_PREFIX) -> FastAPI:
    """Build the FastAPI app with the reconciliation routes under prefix."""
    if not prefix.startswith("/") or prefix.endswith("/"):
        raise ValueError(f"Prefix must start and not end with '/': {prefix!r}")

    application = FastAPI(
        title="Recon Entity DB Server",
        description="Entity reconciliation service over an in-memory or SQLite entity source.",
    )
    application.state.prefix = prefix
    application.include_router(router, prefix=prefix)
    application.add_exception_handler(MalformedQueryError, _malformed_query_handler)
    application.add_exception_handler(SourceUnavailableError, _source_unavailable_handler)
    application.add_exception_handler(sqlite3.Error, _database_error_handler)

    @application.get("/")
    def health():
        """Health check and status info."""
        result: dict[str, Any] = {
            "status": "ok",
            "source": _source_location,
            "loaded": _source is not None,
        }
        if _source is not None:
            result["name"] = _source.name()
            result["types"] = len(_source.types())
        return result

    return application


app = create_app()


# ---------------------------------------------------------------------------
# Warmup and run
# ---------------------------------------------------------------------------


def warmup() -> None:
    """Eagerly open the configured source."""
    logger.info("Warming up reconciliation server...")
    t0 = time.time()
    source = _get_source()
    logger.info(f"  Source '{source.name()}' ready with {len(source.types())} types ({time.time() - t0:.1f}s)")


def run_server(
    source_location: str,
    host: str = "0.0.0.0",
    port: int = DEFAULT_PORT,
    public_url: Optional[str] = None,
    prefix: str = DEFAULT_PREFIX,
    do_warmup: bool = True,
    verbose: bool = False,
):
    """Run the server with uvicorn."""
    import uvicorn

    configure(source_location=source_location, public_url=public_url or f"http://127.0.0.1:{port}")
    if do_warmup:
        warmup()

    log_level = "debug" if verbose else "info"
    logger.info(f"Listening at {_public_url}{prefix}")
    uvicorn.run(create_app(prefix), host=host, port=port, log_level=log_level)
