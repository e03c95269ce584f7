# ekinpanel/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode, urlsplit

from fastapi import Depends, FastAPI, Form, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool
from starlette.middleware.sessions import SessionMiddleware

from ekinpanel import settings
from ekinpanel.forms import AssetForm, LogForm, read_contract
from ekinpanel.geocode import GeocodeError, GeocodingGateway
from ekinpanel.map_picker import MapPicker
from ekinpanel.models import JOB_TYPE_OPTIONS, Asset, Role, job_type_text
from ekinpanel.records import ALL, LOG_GROUP_LABELS, LOG_GROUPS, filter_records, group_logs, parse_bucket_filter, parse_job_filter
from ekinpanel.session import SessionContext, SessionRequired, current_session, end_session, require_session, start_session
from ekinpanel.site_map import google_maps_url, render_location_map
from ekinpanel.store import AuthError, PanelStore, StoreError
from ekinpanel.warranty import (
    DUE_THRESHOLDS,
    WarrantyBucket,
    bucket_label,
    classify_asset,
    count_buckets,
    normalize_threshold,
)

log = logging.getLogger("uvicorn.error")

HOME_LATEST_COUNT = 5

# Ensure templates directory exists
if not settings.TEMPLATES_DIR.exists():
    settings.TEMPLATES_DIR.mkdir(parents=True, exist_ok=True)
    log.warning("templates/ directory was missing; created at %s", settings.TEMPLATES_DIR)

# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.SUPABASE_URL and settings.SUPABASE_ANON_KEY:
        log.info("Record store: %s", settings.SUPABASE_URL)
    else:
        log.warning("SUPABASE_URL / SUPABASE_ANON_KEY not set; sign-in and record pages will fail.")
    if not settings.SUPABASE_JWT_SECRET:
        log.info("SUPABASE_JWT_SECRET not set; access token claims are read without signature checks.")
    log.info("Geocoder: %s", settings.NOMINATIM_URL)
    yield


app = FastAPI(title="Ekin Office Panel", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

SESSION_SECRET = settings.SESSION_SECRET
if not SESSION_SECRET:
    SESSION_SECRET = "dev-secret-key"
    log.warning("SESSION_SECRET not set; using insecure default. Set SESSION_SECRET in production.")

app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET, same_site="lax")

templates = Jinja2Templates(directory=str(settings.TEMPLATES_DIR))

if settings.STATIC_DIR.exists():
    app.mount("/static", StaticFiles(directory=str(settings.STATIC_DIR)), name="static")
    log.info("Static dir: %s", settings.STATIC_DIR)
else:
    log.warning("static/ not found at %s", settings.STATIC_DIR)


def _format_ddmmyyyy(value: Any, include_time: bool = False) -> str:
    if isinstance(value, datetime):
        return value.strftime("%d.%m.%Y %H:%M" if include_time else "%d.%m.%Y")
    if isinstance(value, date):
        return value.strftime("%d.%m.%Y")
    return "-"


templates.env.filters["job_type"] = job_type_text
templates.env.filters["ddmmyyyy"] = _format_ddmmyyyy
templates.env.filters["uid_path"] = lambda uid: quote(str(uid), safe="")


@app.exception_handler(SessionRequired)
async def _session_required_handler(request: Request, exc: SessionRequired) -> RedirectResponse:
    return RedirectResponse(url="/login", status_code=303)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
_GATEWAY: Optional[GeocodingGateway] = None


def get_auth_store() -> PanelStore:
    """Store client without a user token; used for sign-in and sign-out."""
    return PanelStore()


def get_store(ctx: SessionContext = Depends(require_session)) -> PanelStore:
    return PanelStore(access_token=ctx.access_token)


def get_gateway() -> GeocodingGateway:
    global _GATEWAY
    if _GATEWAY is None:
        _GATEWAY = GeocodingGateway()
    return _GATEWAY


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def _add_flash(request: Request, message: str, category: str = "info") -> None:
    flashes = request.session.get("_flashes") or []
    flashes.append({"message": message, "category": category})
    request.session["_flashes"] = flashes


def _consume_flashes(request: Request) -> List[Dict[str, str]]:
    flashes = request.session.get("_flashes") or []
    if flashes:
        request.session["_flashes"] = []
    return flashes


def _render(request: Request, name: str, context: Dict[str, Any], *, status_code: int = 200) -> HTMLResponse:
    payload: Dict[str, Any] = {
        "request": request,
        "current": getattr(request.state, "panel_session", None),
        "flashes": _consume_flashes(request),
    }
    payload.update(context)
    return templates.TemplateResponse(request, name, payload, status_code=status_code)


def _asset_url(uid: str, suffix: str = "") -> str:
    return f"/assets/{quote(uid, safe='')}{suffix}"


def _render_not_found(request: Request, uid: str) -> HTMLResponse:
    return _render(request, "not_found.html", {"message": f"Kayıt bulunamadı: {uid}"}, status_code=404)


def _load_asset(store: PanelStore, uid: str) -> Optional[Asset]:
    try:
        return store.get_asset(uid)
    except StoreError as exc:
        log.warning("Asset lookup failed uid=%s error=%s", uid, exc)
        raise HTTPException(status_code=502, detail=exc.message) from exc


def _row(asset: Asset, due_days: int) -> Dict[str, Any]:
    return {"asset": asset, "warranty": classify_asset(asset, due_days)}


def _records_url(query: str, job: Any, bucket: Any, due_days: int) -> str:
    params: Dict[str, Any] = {}
    if query:
        params["q"] = query
    job_value = job.value if hasattr(job, "value") else job
    if job_value and job_value != ALL:
        params["job"] = job_value
    if bucket != ALL:
        params["w"] = bucket
    params["due"] = due_days
    return "/records?" + urlencode(params)


def _counter_links(counts, due_days: int, query: str = "", job: Any = ALL) -> List[Dict[str, Any]]:
    """Counter tiles; each link only swaps the warranty bucket and keeps the other filters."""
    links = [{"label": "Toplam", "count": counts.total, "url": _records_url(query, job, ALL, due_days), "bucket": ALL}]
    for bucket in (WarrantyBucket.EXPIRED, WarrantyBucket.DUE_SOON, WarrantyBucket.ACTIVE, WarrantyBucket.NO_DATE):
        links.append(
            {
                "label": bucket_label(bucket, due_days),
                "count": counts.for_bucket(bucket),
                "url": _records_url(query, job, bucket.value, due_days),
                "bucket": bucket.value,
            }
        )
    return links


def _filter_context(query: str, job: Any, bucket: Any, due_days: int) -> Dict[str, Any]:
    return {
        "q": query,
        "job": job.value if hasattr(job, "value") else job,
        "w": bucket.value if hasattr(bucket, "value") else bucket,
        "due": due_days,
        "due_options": DUE_THRESHOLDS,
        "job_options": JOB_TYPE_OPTIONS,
        "bucket_options": [
            (WarrantyBucket.EXPIRED.value, bucket_label(WarrantyBucket.EXPIRED, due_days)),
            (WarrantyBucket.DUE_SOON.value, bucket_label(WarrantyBucket.DUE_SOON, due_days)),
            (WarrantyBucket.ACTIVE.value, bucket_label(WarrantyBucket.ACTIVE, due_days)),
            (WarrantyBucket.NO_DATE.value, bucket_label(WarrantyBucket.NO_DATE, due_days)),
        ],
    }


def _render_asset_form(
    request: Request,
    form: AssetForm,
    picker: MapPicker,
    *,
    mode: str,
    error: Optional[str] = None,
    status_code: int = 200,
) -> HTMLResponse:
    center, zoom = picker.view()
    context = {
        "form": form,
        "mode": mode,
        "error": error,
        "uid_prefix": settings.UID_PREFIX,
        "job_options": JOB_TYPE_OPTIONS,
        "picker": {
            "point": picker.point,
            "error": picker.error,
            "center": center,
            "zoom": zoom,
            "query": form.location_query,
            "selected_zoom": settings.SELECTED_MAP_ZOOM,
        },
    }
    return _render(request, "asset_form.html", context, status_code=status_code)


async def _handle_picker_action(
    action: str,
    form_data: Any,
    asset_form: AssetForm,
    picker: MapPicker,
) -> bool:
    """Run a map picker button; returns False when the submit is a save."""
    if action == "locate":
        await run_in_threadpool(picker.search, asset_form.location_query)
        return True
    if action == "clear_location":
        picker.clear()
        return True
    if action == "pick":
        lat = form_data.get("pick_lat")
        lng = form_data.get("pick_lng")
        try:
            picker.click(float(str(lat).strip()), float(str(lng).strip()))
        except (TypeError, ValueError):
            picker.error = "Konum çözümlenemedi."
        return True
    return False


# ---------------------------------------------------------------------------
# Auth views
# ---------------------------------------------------------------------------
@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request) -> Response:
    if current_session(request) is not None:
        return RedirectResponse(url="/", status_code=303)
    return _render(request, "login.html", {"error": None, "email": ""})


@app.post("/login", response_class=HTMLResponse)
def login_action(
    request: Request,
    email: str = Form(""),
    password: str = Form(""),
    store: PanelStore = Depends(get_auth_store),
) -> Response:
    email = email.strip().lower()
    if not email or not password:
        return _render(request, "login.html", {"error": "E-posta ve şifre gerekli.", "email": email}, status_code=400)
    try:
        auth = store.sign_in(email, password)
    except AuthError as exc:
        log.info("Login rejected for %s: %s", email, exc)
        return _render(request, "login.html", {"error": exc.message, "email": email}, status_code=401)
    except StoreError as exc:
        log.warning("Login failed for %s: %s", email, exc)
        return _render(request, "login.html", {"error": exc.message, "email": email}, status_code=502)
    try:
        role = store.get_role(auth.user_id)
    except StoreError:
        log.exception("Role lookup failed for %s; continuing as office", email)
        role = Role.OFFICE
    start_session(request, auth, role)
    log.info("User %s logged in role=%s", email, role.value)
    return RedirectResponse(url="/", status_code=303)


@app.post("/logout")
def logout(request: Request, store: PanelStore = Depends(get_auth_store)) -> RedirectResponse:
    email = request.session.get("email")
    store.access_token = request.session.get("access_token")
    try:
        store.sign_out()
    except StoreError:
        log.warning("Sign-out call failed for %s; clearing local session anyway", email)
    end_session(request)
    return RedirectResponse(url="/login", status_code=303)


# ---------------------------------------------------------------------------
# Record list views
# ---------------------------------------------------------------------------
@app.get("/", response_class=HTMLResponse)
def home(
    request: Request,
    due: Optional[str] = None,
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
) -> HTMLResponse:
    due_days = normalize_threshold(due)
    error = None
    try:
        assets = store.list_assets()
    except StoreError as exc:
        error = exc.message
        assets = []
    counts = count_buckets(assets, due_days)
    context = {
        "error": error,
        "counters": _counter_links(counts, due_days),
        "rows": [_row(asset, due_days) for asset in assets[:HOME_LATEST_COUNT]],
    }
    context.update(_filter_context("", ALL, ALL, due_days))
    return _render(request, "home.html", context)


@app.get("/records", response_class=HTMLResponse)
def records_page(
    request: Request,
    q: str = "",
    job: str = ALL,
    w: str = ALL,
    due: Optional[str] = None,
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
) -> HTMLResponse:
    due_days = normalize_threshold(due)
    job_filter = parse_job_filter(job)
    bucket_filter = parse_bucket_filter(w)
    error = None
    try:
        assets = store.list_assets()
    except StoreError as exc:
        error = exc.message
        assets = []
    today = date.today()
    matched = filter_records(assets, q, job_filter, bucket_filter, due_days, today)
    context = {
        "error": error,
        "rows": [_row(asset, due_days) for asset in matched],
        "total": len(assets),
        "counters": _counter_links(count_buckets(assets, due_days, today), due_days, q, job_filter),
    }
    context.update(_filter_context(q, job_filter, bucket_filter, due_days))
    return _render(request, "records.html", context)


# ---------------------------------------------------------------------------
# Asset forms
# ---------------------------------------------------------------------------
@app.get("/new", response_class=HTMLResponse)
def new_asset_page(
    request: Request,
    ctx: SessionContext = Depends(require_session),
    gateway: GeocodingGateway = Depends(get_gateway),
) -> HTMLResponse:
    form = AssetForm()
    picker = MapPicker(gateway, form.get_point, form.set_point)
    return _render_asset_form(request, form, picker, mode="new")


@app.post("/new", response_class=HTMLResponse)
async def new_asset_submit(
    request: Request,
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
    gateway: GeocodingGateway = Depends(get_gateway),
) -> Response:
    form_data = await request.form()
    form = AssetForm.from_form(form_data)
    picker = MapPicker(gateway, form.get_point, form.set_point)
    action = str(form_data.get("action") or "save")
    if await _handle_picker_action(action, form_data, form, picker):
        return _render_asset_form(request, form, picker, mode="new")

    error = form.validate(require_uid=True)
    if error:
        return _render_asset_form(request, form, picker, mode="new", error=error, status_code=400)
    try:
        contract = await read_contract(form_data.get("contract"))
    except ValueError as exc:
        return _render_asset_form(request, form, picker, mode="new", error=str(exc), status_code=400)

    try:
        await run_in_threadpool(store.create_asset, form.to_payload(include_uid=True), contract)
    except StoreError as exc:
        log.warning("Create asset failed uid=%s user=%s error=%s", form.uid, ctx.email, exc)
        return _render_asset_form(request, form, picker, mode="new", error=exc.message, status_code=400)
    log.info("Asset %s created by %s", form.uid, ctx.email)
    _add_flash(request, "Kayıt oluşturuldu.", "success")
    return RedirectResponse(url=_asset_url(form.uid), status_code=303)


@app.get("/assets/{uid}/edit", response_class=HTMLResponse)
def edit_asset_page(
    request: Request,
    uid: str,
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
    gateway: GeocodingGateway = Depends(get_gateway),
) -> HTMLResponse:
    asset = _load_asset(store, uid)
    if asset is None:
        return _render_not_found(request, uid)
    form = AssetForm.from_asset(asset)
    picker = MapPicker(gateway, form.get_point, form.set_point)
    return _render_asset_form(request, form, picker, mode="edit")


@app.post("/assets/{uid}/edit", response_class=HTMLResponse)
async def edit_asset_submit(
    request: Request,
    uid: str,
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
    gateway: GeocodingGateway = Depends(get_gateway),
) -> Response:
    asset = await run_in_threadpool(_load_asset, store, uid)
    if asset is None:
        return _render_not_found(request, uid)
    form_data = await request.form()
    form = AssetForm.from_form(form_data, uid=asset.uid)
    form.contract_pdf_path = asset.contract_pdf_path
    picker = MapPicker(gateway, form.get_point, form.set_point)
    action = str(form_data.get("action") or "save")
    if await _handle_picker_action(action, form_data, form, picker):
        return _render_asset_form(request, form, picker, mode="edit")

    error = form.validate(require_uid=False)
    if error:
        return _render_asset_form(request, form, picker, mode="edit", error=error, status_code=400)
    try:
        contract = await read_contract(form_data.get("contract"))
    except ValueError as exc:
        return _render_asset_form(request, form, picker, mode="edit", error=str(exc), status_code=400)

    try:
        await run_in_threadpool(store.save_asset, asset.uid, form.to_payload(include_uid=False), contract)
    except StoreError as exc:
        log.warning("Update asset failed uid=%s user=%s error=%s", asset.uid, ctx.email, exc)
        return _render_asset_form(request, form, picker, mode="edit", error=exc.message, status_code=400)
    log.info("Asset %s updated by %s", asset.uid, ctx.email)
    _add_flash(request, "Kayıt güncellendi.", "success")
    return RedirectResponse(url=_asset_url(asset.uid), status_code=303)


# ---------------------------------------------------------------------------
# Asset detail
# ---------------------------------------------------------------------------
@app.get("/assets/{uid}", response_class=HTMLResponse)
def asset_detail(
    request: Request,
    uid: str,
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
) -> HTMLResponse:
    asset = _load_asset(store, uid)
    if asset is None:
        return _render_not_found(request, uid)
    error = None
    try:
        logs = store.list_logs(asset.uid, settings.LOG_LIMIT)
    except StoreError as exc:
        error = exc.message
        logs = []
    point = asset.location
    context = {
        "asset": asset,
        "error": error,
        "warranty": classify_asset(asset),
        "map_html": render_location_map(asset),
        "maps_url": google_maps_url(point.lat, point.lng) if point else None,
        "log_groups": group_logs(logs),
        "log_group_order": LOG_GROUPS,
        "log_group_labels": LOG_GROUP_LABELS,
        "log_count": len(logs),
        "can_delete": ctx.can_delete,
    }
    return _render(request, "asset_detail.html", context)


@app.post("/assets/{uid}/delete")
def delete_asset(
    request: Request,
    uid: str,
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
) -> RedirectResponse:
    if not ctx.can_delete:
        log.warning("Delete refused for %s on %s (role=%s)", ctx.email, uid, ctx.role.value)
        raise HTTPException(status_code=403, detail="Silme yetkisi yalnızca yöneticidedir.")
    try:
        store.delete_asset_cascade(uid)
    except StoreError as exc:
        log.warning("Delete asset failed uid=%s user=%s error=%s", uid, ctx.email, exc)
        _add_flash(request, exc.message, "error")
        return RedirectResponse(url=_asset_url(uid), status_code=303)
    log.info("Asset %s deleted by %s", uid, ctx.email)
    _add_flash(request, f"Kayıt silindi: {uid}", "success")
    return RedirectResponse(url="/", status_code=303)


@app.get("/assets/{uid}/contract")
def asset_contract(
    request: Request,
    uid: str,
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
) -> Response:
    asset = _load_asset(store, uid)
    if asset is None:
        return _render_not_found(request, uid)
    if not asset.contract_pdf_path:
        raise HTTPException(status_code=404, detail="Sözleşme yok.")
    try:
        url = store.signed_url(settings.CONTRACTS_BUCKET, asset.contract_pdf_path)
    except StoreError as exc:
        _add_flash(request, exc.message, "error")
        return RedirectResponse(url=_asset_url(uid), status_code=303)
    return RedirectResponse(url=url, status_code=303)


def _is_store_url(url: str) -> bool:
    store_host = urlsplit(settings.SUPABASE_URL or "").netloc.lower()
    return bool(store_host) and urlsplit(url).netloc.lower() == store_host


@app.get("/assets/{uid}/logs/{log_id}/photo")
def log_photo(
    request: Request,
    uid: str,
    log_id: int,
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
) -> Response:
    try:
        entry = store.get_log(uid, log_id)
    except StoreError as exc:
        raise HTTPException(status_code=502, detail=exc.message) from exc
    if entry is None or not entry.photo_url:
        raise HTTPException(status_code=404, detail="Fotoğraf yok.")
    if entry.photo_url.startswith(("http://", "https://")):
        if not _is_store_url(entry.photo_url):
            log.warning("Refusing photo redirect outside the store uid=%s log=%s", uid, log_id)
            raise HTTPException(status_code=404, detail="Fotoğraf yok.")
        return RedirectResponse(url=entry.photo_url, status_code=303)
    try:
        url = store.signed_url(settings.PHOTOS_BUCKET, entry.photo_url)
    except StoreError as exc:
        _add_flash(request, exc.message, "error")
        return RedirectResponse(url=_asset_url(uid), status_code=303)
    return RedirectResponse(url=url, status_code=303)


# ---------------------------------------------------------------------------
# Logs
# ---------------------------------------------------------------------------
def _render_log_form(request: Request, uid: str, form: LogForm, *, error: Optional[str] = None, status_code: int = 200) -> HTMLResponse:
    context = {"uid": uid, "form": form, "error": error, "action_options": JOB_TYPE_OPTIONS}
    return _render(request, "log_form.html", context, status_code=status_code)


@app.get("/assets/{uid}/new-log", response_class=HTMLResponse)
def new_log_page(
    request: Request,
    uid: str,
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
) -> HTMLResponse:
    asset = _load_asset(store, uid)
    if asset is None:
        return _render_not_found(request, uid)
    return _render_log_form(request, asset.uid, LogForm())


@app.post("/assets/{uid}/new-log", response_class=HTMLResponse)
def new_log_submit(
    request: Request,
    uid: str,
    action: str = Form(""),
    note: str = Form(""),
    ctx: SessionContext = Depends(require_session),
    store: PanelStore = Depends(get_store),
) -> Response:
    form = LogForm.from_form({"action": action, "note": note})
    error = form.validate()
    if error:
        return _render_log_form(request, uid, form, error=error, status_code=400)
    try:
        store.insert_log(form.to_payload(uid))
    except StoreError as exc:
        log.warning("Insert log failed uid=%s user=%s error=%s", uid, ctx.email, exc)
        return _render_log_form(request, uid, form, error=exc.message, status_code=400)
    log.info("Log added to %s by %s action=%s", uid, ctx.email, form.action)
    _add_flash(request, "Log eklendi.", "success")
    return RedirectResponse(url=_asset_url(uid), status_code=303)


# ---------------------------------------------------------------------------
# Geocoding passthrough & health
# ---------------------------------------------------------------------------
@app.get("/api/geocode")
def api_geocode(q: str = "", gateway: GeocodingGateway = Depends(get_gateway)) -> JSONResponse:
    results = gateway.proxy_search(q)
    return JSONResponse({"results": [item.to_dict() for item in results]})


@app.get("/api/geocode/lookup")
def api_geocode_lookup(q: str = "", gateway: GeocodingGateway = Depends(get_gateway)) -> JSONResponse:
    """Map picker search: first country-filtered candidate, coordinates as returned upstream."""
    try:
        result = gateway.lookup(q)
    except GeocodeError as exc:
        log.warning("Geocode lookup failed query=%r error=%s", q, exc)
        return JSONResponse({"results": [], "error": str(exc)})
    return JSONResponse({"results": [result.to_dict()] if result else []})


@app.get("/healthz")
def healthz() -> Dict[str, bool]:
    return {"ok": True}
