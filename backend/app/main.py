import logging
import os
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

import httpx
from fastapi import APIRouter, BackgroundTasks, Body, Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from pena_core import AdminNotifier, ClubStore, DocumentError, FeatureFlags, MerchandiseCatalog, VotingBoard
from pena_core import messages
from pena_core.schemas import (
    MerchandiseCreate,
    MerchandiseQuery,
    MerchandiseUpdate,
    PreOrderAction,
    RSVPDeleteInput,
    RSVPInput,
    RSVPQuery,
    parse_voting_request,
)

logger = logging.getLogger(__name__)


def _cors_origins() -> List[str]:
    raw = os.getenv("CORS_ORIGINS", "*")
    origins = [item.strip() for item in raw.split(",") if item.strip()]
    return origins or ["*"]


app = FastAPI(title="Peña Bética Escocesa API", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

RSVP_RATE_LIMIT = os.getenv("RSVP_RATE_LIMIT", "5 per 15 minutes")


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return get_remote_address(request)


limiter = Limiter(
    key_func=_client_ip,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() not in ("0", "false", "no", "off"),
    storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI", "memory://"),
    strategy="fixed-window",
)
app.state.limiter = limiter


@lru_cache(maxsize=1)
def store() -> ClubStore:
    return ClubStore()


@lru_cache(maxsize=1)
def voting_board() -> VotingBoard:
    return VotingBoard.in_dir(store().data_dir)


@lru_cache(maxsize=1)
def catalog() -> MerchandiseCatalog:
    return MerchandiseCatalog.in_dir(store().data_dir)


@lru_cache(maxsize=1)
def notifier() -> AdminNotifier:
    return AdminNotifier()


@lru_cache(maxsize=1)
def features() -> FeatureFlags:
    return FeatureFlags()


# ---------------------------------------------------------------------------
# Error bodies


def _error_body(message: Any, details: Optional[List[Dict[str, str]]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": message}
    if details is not None:
        body["details"] = details
    return body


def _request_issues(errors: List[Dict[str, Any]]) -> List[Dict[str, str]]:
    issues = []
    for item in errors:
        loc = [str(part) for part in item.get("loc", ()) if part not in ("body", "query")]
        issues.append({"field": ".".join(loc), "message": str(item.get("msg", ""))})
    return issues


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=_error_body(exc.detail), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    issues = _request_issues(list(exc.errors()))
    message = issues[0]["message"] if issues else messages.VALIDATION_ERROR
    return JSONResponse(status_code=400, content=_error_body(message, issues))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit %s exceeded by %s on %s", exc.detail, _client_ip(request), request.url.path)
    return JSONResponse(status_code=429, content=_error_body(messages.TOO_MANY_REQUESTS))


def _invalid(exc: ValidationError) -> RequestValidationError:
    return RequestValidationError(exc.errors())


# ---------------------------------------------------------------------------
# Auth


def _auth_settings() -> tuple[str, str]:
    supabase_url = os.getenv("SUPABASE_URL", "").rstrip("/")
    supabase_anon_key = os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_SERVICE_KEY") or ""
    return supabase_url, supabase_anon_key


def require_user(authorization: str = Header(default="")) -> Dict[str, Any]:
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail=messages.UNAUTHORIZED)

    token = authorization.split(" ", 1)[1].strip()
    if not token:
        raise HTTPException(status_code=401, detail=messages.UNAUTHORIZED)

    supabase_url, supabase_anon_key = _auth_settings()
    if not supabase_url or not supabase_anon_key:
        raise HTTPException(status_code=500, detail=messages.AUTH_CONFIG_INCOMPLETE)

    endpoint = f"{supabase_url}/auth/v1/user"
    headers = {
        "Authorization": f"Bearer {token}",
        "apikey": supabase_anon_key,
    }

    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(endpoint, headers=headers)
            response.raise_for_status()
            payload = response.json()
    except httpx.HTTPStatusError as exc:
        status = exc.response.status_code if exc.response is not None else 502
        if status in (401, 403):
            raise HTTPException(status_code=401, detail=messages.INVALID_TOKEN) from exc
        raise HTTPException(status_code=502, detail=messages.TOKEN_VERIFICATION_FAILED) from exc
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=502, detail=messages.TOKEN_VERIFICATION_FAILED) from exc
    except ValueError as exc:
        raise HTTPException(status_code=502, detail=messages.TOKEN_VERIFICATION_FAILED) from exc

    user_id = str(payload.get("id") or "").strip() if isinstance(payload, dict) else ""
    if not user_id:
        raise HTTPException(status_code=401, detail=messages.INVALID_TOKEN)

    payload["id"] = user_id
    return payload


def optional_user(authorization: str = Header(default="")) -> Optional[Dict[str, Any]]:
    """Identify the caller when a token is sent; anonymous otherwise.

    Without Supabase auth configured the site runs on local files and has
    no accounts, so a stray bearer token is ignored rather than rejected.
    """
    if not authorization:
        return None
    if not all(_auth_settings()):
        logger.info("Ignoring bearer token: Supabase auth is not configured")
        return None
    return require_user(authorization)


def require_feature(name: str) -> Callable[[], None]:
    def check() -> None:
        if not features().is_enabled(name):
            raise HTTPException(status_code=404, detail=messages.FEATURE_DISABLED)

    return check


def rsvp_query(match: Optional[str] = Query(default=None)) -> RSVPQuery:
    try:
        return RSVPQuery.model_validate({"match": match})
    except ValidationError as exc:
        raise _invalid(exc) from exc


def merchandise_query(
    category: Optional[str] = Query(default=None),
    featured: Optional[str] = Query(default=None),
    in_stock: Optional[str] = Query(default=None, alias="inStock"),
) -> MerchandiseQuery:
    raw = {"category": category, "featured": featured, "inStock": in_stock}
    try:
        return MerchandiseQuery.model_validate({key: value for key, value in raw.items() if value is not None})
    except ValidationError as exc:
        raise _invalid(exc) from exc



# ---------------------------------------------------------------------------
# Routes


@app.get("/health")
def health() -> dict[str, Any]:
    return {"status": "ok", "features": features().snapshot()}


rsvp_router = APIRouter(prefix="/api/rsvp", dependencies=[Depends(require_feature("rsvp"))])


@rsvp_router.get("/attendees")
def rsvp_attendees(query: RSVPQuery = Depends(rsvp_query)):
    match = query.match
    try:
        return store().attendee_summary(match)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RuntimeError as exc:
        logger.warning("Attendee summary for match %s failed: %s", match, exc)
        raise HTTPException(status_code=502, detail=messages.RSVP_DATA_ERROR) from exc


@rsvp_router.get("/status")
def rsvp_status(
    query: RSVPQuery = Depends(rsvp_query),
    email: Optional[str] = Query(default=None),
    user: Optional[Dict[str, Any]] = Depends(optional_user),
):
    match = query.match
    user_id = user.get("id") if user else None
    lookup_email = email or (user.get("email") if user else None)
    try:
        found = store().rsvp_status(match, user_id=user_id, email=lookup_email)
    except PermissionError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RuntimeError as exc:
        logger.warning("RSVP status lookup for match %s failed: %s", match, exc)
        raise HTTPException(status_code=502, detail=messages.RSVP_DATA_ERROR) from exc

    if found is None:
        raise HTTPException(status_code=404, detail=messages.NOT_FOUND)

    record = found["record"]
    return {
        "success": True,
        "status": "confirmed",
        "attendees": record.get("attendees"),
        "message": record.get("message") or None,
        "whatsapp_interest": bool(record.get("whatsapp_interest")),
        "created_at": record.get("created_at"),
        "updated_at": record.get("updated_at"),
        "match": found["match"],
    }


@rsvp_router.get("")
def rsvp_overview(query: RSVPQuery = Depends(rsvp_query)):
    match = query.match
    try:
        current = store().resolve_match(match)
        total, confirmed = store().match_totals(current)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RuntimeError as exc:
        logger.warning("RSVP overview for match %s failed: %s", match, exc)
        raise HTTPException(status_code=502, detail=messages.RSVP_DATA_ERROR) from exc

    return {
        "success": True,
        "currentMatch": current,
        "totalAttendees": total,
        "confirmedCount": confirmed,
    }


@rsvp_router.post("")
@limiter.limit(RSVP_RATE_LIMIT)
def submit_rsvp(
    request: Request,
    payload: RSVPInput,
    background_tasks: BackgroundTasks,
    query: RSVPQuery = Depends(rsvp_query),
    user: Optional[Dict[str, Any]] = Depends(optional_user),
):
    match = query.match
    data = payload.model_dump()
    if user and not data.get("user_id"):
        data["user_id"] = user["id"]

    try:
        result = store().submit_rsvp(data, match)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except RuntimeError as exc:
        logger.error("RSVP submission for match %s failed: %s", match, exc)
        raise HTTPException(status_code=502, detail=messages.RSVP_SUBMIT_ERROR) from exc

    background_tasks.add_task(notifier().rsvp_received, result["record"], result["match"], result["isUpdate"])
    return {
        "success": True,
        "message": messages.RSVP_UPDATED if result["isUpdate"] else messages.RSVP_CREATED,
        "totalAttendees": result["totalAttendees"],
        "confirmedCount": result["confirmedCount"],
    }


@rsvp_router.delete("")
def delete_rsvp(
    id: Optional[int] = Query(default=None),
    email: Optional[str] = Query(default=None),
    user: Dict[str, Any] = Depends(require_user),
):
    try:
        target = RSVPDeleteInput(id=id, email=email)
    except ValidationError as exc:
        raise _invalid(exc) from exc

    try:
        removed = store().delete_rsvp(rsvp_id=target.id, email=target.email)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RuntimeError as exc:
        logger.error("RSVP deletion failed: %s", exc)
        raise HTTPException(status_code=502, detail=messages.INTERNAL_ERROR) from exc

    if not removed:
        raise HTTPException(status_code=404, detail=messages.RSVP_DELETE_NOT_FOUND)

    logger.info("User %s deleted %d RSVP(s)", user.get("id"), removed)
    return {"success": True, "message": messages.RSVP_DELETED, "deleted": removed}


voting_router = APIRouter(prefix="/api/camiseta-voting", dependencies=[Depends(require_feature("camiseta_voting"))])


@voting_router.get("")
def voting_snapshot():
    try:
        return voting_board().snapshot()
    except DocumentError as exc:
        logger.error("Reading voting document failed: %s", exc)
        raise HTTPException(status_code=500, detail=messages.VOTING_DATA_ERROR) from exc


@voting_router.post("")
def voting_action(body: Any = Body(...)):
    try:
        request = parse_voting_request(body)
    except ValidationError as exc:
        raise _invalid(exc) from exc

    try:
        if isinstance(request, PreOrderAction):
            order = request.order_data.model_dump(by_alias=True)
            result = voting_board().pre_order(order)
            return {"success": True, "message": messages.PRE_ORDER_RECORDED, **result}

        result = voting_board().vote(request.design_id, request.voter.model_dump())
        return {"success": True, "message": messages.VOTE_RECORDED, **result}
    except DocumentError as exc:
        logger.error("Updating voting document failed: %s", exc)
        raise HTTPException(status_code=500, detail=messages.INTERNAL_ERROR) from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


merchandise_router = APIRouter(prefix="/api/merchandise", dependencies=[Depends(require_feature("merchandise"))])


@merchandise_router.get("")
def list_merchandise(query: MerchandiseQuery = Depends(merchandise_query)):
    try:
        listing = catalog().list_items(category=query.category, featured=query.featured, in_stock=query.in_stock)
    except DocumentError as exc:
        logger.error("Reading merchandise document failed: %s", exc)
        raise HTTPException(status_code=500, detail=messages.MERCHANDISE_DATA_ERROR) from exc
    return {"success": True, **listing}


@merchandise_router.post("")
def create_merchandise(payload: MerchandiseCreate, user: Dict[str, Any] = Depends(require_user)):
    try:
        item = catalog().add_item(payload.model_dump(by_alias=True))
    except DocumentError as exc:
        logger.error("Adding merchandise failed: %s", exc)
        raise HTTPException(status_code=500, detail=messages.INTERNAL_ERROR) from exc
    return {"success": True, "message": messages.PRODUCT_ADDED, "item": item}


@merchandise_router.put("")
def update_merchandise(
    payload: MerchandiseUpdate,
    id: Optional[str] = Query(default=None),
    user: Dict[str, Any] = Depends(require_user),
):
    if not id:
        raise HTTPException(status_code=400, detail=messages.PRODUCT_ID_REQUIRED)
    try:
        item = catalog().update_item(id, payload.model_dump(by_alias=True, exclude_unset=True))
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DocumentError as exc:
        logger.error("Updating merchandise %s failed: %s", id, exc)
        raise HTTPException(status_code=500, detail=messages.INTERNAL_ERROR) from exc
    return {"success": True, "message": messages.PRODUCT_UPDATED, "item": item}


@merchandise_router.delete("")
def delete_merchandise(id: Optional[str] = Query(default=None), user: Dict[str, Any] = Depends(require_user)):
    if not id:
        raise HTTPException(status_code=400, detail=messages.PRODUCT_ID_REQUIRED)
    try:
        catalog().delete_item(id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except DocumentError as exc:
        logger.error("Deleting merchandise %s failed: %s", id, exc)
        raise HTTPException(status_code=500, detail=messages.INTERNAL_ERROR) from exc
    return {"success": True, "message": messages.PRODUCT_DELETED}


app.include_router(rsvp_router)
app.include_router(voting_router)
app.include_router(merchandise_router)
