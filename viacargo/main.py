import functools
import logging
import os
import re
import secrets
import time
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from urllib.parse import urlencode

from fastapi import Depends, FastAPI, Form, Request
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from pydantic import ValidationError as SchemaError
from sqlalchemy.ext.asyncio import AsyncSession

from .aggregation import (
    count_orders, filter_orders, global_pending_receivables, goal_progress,
    monthly_cash_flow, monthly_net, transactions_in_month,
)
from .auth import (
    SESSION_COOKIE, authenticate_local, cleanup_expired_sessions, close_http_client,
    create_session, destroy_session, ensure_operator, get_session_token,
    get_user_id_from_session, link_supabase_user, supabase_sign_in,
)
from .clock import Clock, SystemClock
from .config import AppConfig, configure_logging, load_config
from .criticality import (
    AlertMonitor, CookieFlagStore, days_until, deadline_label, deadline_status, is_order_critical,
)
from .db import create_tables, make_engine, make_sessionmaker
from .documents import (
    DriverData, InventoryDeclaration, InventoryItem, TeamOrderConfig, declaration_filename, document_filename,
    render_inventory_declaration, render_work_order,
)
from .domain import (
    NOTE_COLOR_PRESETS, ROLE_LABELS, ROLE_TYPES, DocumentRole, OrderFilter, OrderNote,
    ServiceType, Transaction, TransactionType, _utcnow,
)
from .errors import AuthenticationError, GatewayError, NotFoundError, ValidationError, ViaCargoError
from .gateway import Gateway, SqlGateway
from .lifecycle import OrderLifecycleManager
from .rules import (
    calculate_costs, calculate_pending_amount, calculate_profit, calculate_received_amount,
    currency_symbol, format_currency, stage_label,
)
from .schemas import (
    DriverDocumentIn, ExtraIn, InventoryDeclarationIn, InventoryItemIn, NoteIn, OrderIn, TeamDocumentIn, TransactionIn,
)
from .utils import (
    format_date_br, month_key, month_label, parse_month_key, shift_month, to_float, whatsapp_link,
)

config = load_config()
configure_logging(config.log_level)
logger = logging.getLogger("viacargo.main")

# ─── DB setup ───
engine = make_engine(config.database_url)
SessionLocal = make_sessionmaker(engine)

# Swapped for a FixedClock in tests
clock: Clock = SystemClock()


# ─── CSRF Protection (double-submit cookie pattern) ───
# Every rendered page carries the token as a hidden field and a cookie; every
# form POST must send back the same value.

CSRF_COOKIE = "vc_csrf"
CSRF_FORM_FIELD = "csrf_token"


def _generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)


def _validate_csrf(request_token: str | None, cookie_token: str | None) -> bool:
    """Constant-time comparison of form token vs cookie token."""
    if not request_token or not cookie_token:
        return False
    return secrets.compare_digest(request_token, cookie_token)


def _secure_cookies() -> bool:
    return not config.is_sqlite


# ─── App setup ───
@asynccontextmanager
async def lifespan(application: FastAPI):
    await create_tables(engine)
    async with SessionLocal() as db:
        await cleanup_expired_sessions(db)
        if not config.supabase_enabled:
            await ensure_operator(db, config.operator_username, config.operator_password)
    yield
    await close_http_client()
    await engine.dispose()

app = FastAPI(title="ViaCargo", lifespan=lifespan)
app.add_middleware(GZipMiddleware, minimum_size=1000)

templates = Jinja2Templates(directory=os.path.join(os.path.dirname(__file__), "templates"))


def currency_filter(cfg: AppConfig):
    return functools.partial(format_currency, symbol=currency_symbol(cfg.currency), locale=cfg.locale)


templates.env.filters["currency"] = currency_filter(config)
templates.env.filters["date_br"] = format_date_br
templates.env.filters["month_label"] = month_label
templates.env.filters["stage"] = stage_label
templates.env.globals["csrf_field_name"] = CSRF_FORM_FIELD
templates.env.globals["role_labels"] = ROLE_LABELS
templates.env.globals["note_colors"] = NOTE_COLOR_PRESETS
templates.env.globals["alert_poll_seconds"] = config.alert_poll_seconds


def render(request: Request, name: str, context: dict, status_code: int = 200):
    """TemplateResponse with the CSRF token injected into the context."""
    token = request.cookies.get(CSRF_COOKIE) or getattr(request.state, "_csrf_generated", None) or _generate_csrf_token()
    request.state._csrf_generated = token
    context = {**context, "csrf_token": token}
    return templates.TemplateResponse(request, name, context, status_code=status_code)


@app.exception_handler(Exception)
async def _exc(request: Request, exc: Exception):
    logger.error(f"Unhandled exception at {request.url}: {traceback.format_exc()}")
    return HTMLResponse(
        """<!DOCTYPE html><html lang="pt-BR"><head><title>Erro</title>
        <style>body{font-family:system-ui,sans-serif;display:flex;align-items:center;justify-content:center;min-height:100vh;margin:0;background:#0f172a;color:#e2e8f0}
        .box{text-align:center;padding:2rem;max-width:400px}h1{font-size:1.5rem;margin-bottom:.5rem}
        p{color:#94a3b8;font-size:.95rem}a{color:#60a5fa;text-decoration:none}</style></head>
        <body><div class="box"><h1>Algo deu errado</h1>
        <p>Ocorreu um erro inesperado. O problema foi registrado.</p>
        <p style="margin-top:1.5rem"><a href="/">← Voltar ao painel</a></p></div></body></html>""",
        status_code=500,
    )


async def get_db():
    async with SessionLocal() as session:
        yield session


def get_gateway(request: Request, db: AsyncSession = Depends(get_db)) -> Gateway:
    return SqlGateway(db, getattr(request.state, "user_id", None))


# ─── Middleware ───
PUBLIC_PATHS = {"/login"}


@app.middleware("http")
async def csrf_middleware(request: Request, call_next):
    """Reject POSTs without the CSRF cookie; make sure the cookie is set."""
    if request.method == "POST" and not request.url.path.startswith("/api/"):
        if not request.cookies.get(CSRF_COOKIE):
            return HTMLResponse(
                '<h1>403 Forbidden</h1><p>Token CSRF ausente. <a href="/">Volte</a> e tente novamente.</p>',
                status_code=403,
            )
    response = await call_next(request)
    if not request.cookies.get(CSRF_COOKIE):
        token = getattr(request.state, "_csrf_generated", None) or _generate_csrf_token()
        response.set_cookie(
            CSRF_COOKIE, token,
            httponly=False, samesite="lax", secure=_secure_cookies(),
            max_age=60 * 60 * 24,
        )
    return response


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    response.headers["Permissions-Policy"] = "camera=(), microphone=(), geolocation=()"
    return response


@app.middleware("http")
async def auth_middleware(request: Request, call_next):
    path = request.url.path
    token = get_session_token(request)
    async with SessionLocal() as db:
        user_id = await get_user_id_from_session(db, token)

    if path in PUBLIC_PATHS:
        if user_id is not None:
            return RedirectResponse(url="/", status_code=303)
        return await call_next(request)

    if user_id is None:
        if path.startswith("/api/"):
            return JSONResponse({"error": "not authenticated"}, status_code=401)
        dest = path
        if request.url.query:
            dest += f"?{request.url.query}"
        return RedirectResponse(url=f"/login?next={dest}", status_code=303)

    request.state.user_id = user_id
    return await call_next(request)


async def _checked_form(request: Request):
    form = await request.form()
    if not _validate_csrf(form.get(CSRF_FORM_FIELD), request.cookies.get(CSRF_COOKIE)):
        return None
    return form


def _forbidden() -> HTMLResponse:
    return HTMLResponse('<h1>403 Forbidden</h1><p>Token CSRF inválido.</p>', status_code=403)


# ─── Helpers ───
def _month_param(value: str | None, default: str) -> str:
    parsed = parse_month_key(value)
    if not parsed:
        return default
    return f"{parsed[0]:04d}-{parsed[1]:02d}"


def _filter_param(value: str | None) -> OrderFilter:
    try:
        return OrderFilter(value or OrderFilter.ALL.value)
    except ValueError:
        return OrderFilter.ALL


def _safe_next(value: str | None) -> str:
    # Relative paths only (no //evil.com)
    if value and value.startswith("/") and not re.match(r"^//|^/\\", value):
        return value
    return "/"


def _with_flash(url: str, **params) -> str:
    query = urlencode({k: v for k, v in params.items() if v})
    if not query:
        return url
    return f"{url}{'&' if '?' in url else '?'}{query}"


def _alert_monitor(store) -> AlertMonitor:
    return AlertMonitor(
        store, clock,
        cooldown=timedelta(hours=config.alert_cooldown_hours),
        critical_days=config.critical_days,
    )


def _order_view(order, today_) -> dict:
    diff = days_until(order.pickup_date, today_)
    return {
        "order": order,
        "stage": stage_label(order.progress),
        "received": calculate_received_amount(order),
        "pending": calculate_pending_amount(order),
        "costs": calculate_costs(order.financials),
        "profit": calculate_profit(order.financials),
        "deadline": deadline_status(order.pickup_date, today_, config.critical_days, config.warning_days),
        "deadline_label": deadline_label(diff),
        "critical": is_order_critical(order, today_, config.critical_days),
        "whatsapp_link": whatsapp_link(order.whatsapp),
    }


async def _find_order(gateway: Gateway, order_id: str):
    for order in await gateway.fetch_orders():
        if order.id == order_id:
            return order
    raise NotFoundError("fetch_order", order_id)


# ════════════════════════════════════════════════
# AUTH ROUTES
# ════════════════════════════════════════════════

# ── Rate limiting for login (in-memory, resets on restart) ──
_LOGIN_ATTEMPTS: dict[str, list[float]] = {}
_LOGIN_RATE_LIMIT = 10
_LOGIN_RATE_WINDOW = 900.0


def _check_rate_limit(ip: str) -> bool:
    """Returns True if the IP is rate-limited (too many attempts)."""
    now = time.monotonic()
    attempts = [t for t in _LOGIN_ATTEMPTS.get(ip, []) if now - t < _LOGIN_RATE_WINDOW]
    _LOGIN_ATTEMPTS[ip] = attempts
    return len(attempts) >= _LOGIN_RATE_LIMIT


def _record_failed_login(ip: str):
    if len(_LOGIN_ATTEMPTS) > 1000:
        _LOGIN_ATTEMPTS.clear()
    _LOGIN_ATTEMPTS.setdefault(ip, []).append(time.monotonic())


def _set_session_cookie(resp, token: str, remember_me: bool):
    max_age = 60 * 60 * 24 * 30 if remember_me else None
    resp.set_cookie(
        SESSION_COOKIE, token,
        httponly=True, samesite="lax", secure=_secure_cookies(), max_age=max_age,
    )


@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, error: str = "", next: str = "/"):
    return render(request, "login.html", {
        "error": error,
        "supabase_enabled": config.supabase_enabled,
        "next": _safe_next(next),
    })


@app.post("/login")
async def login_post(
    request: Request,
    db: AsyncSession = Depends(get_db),
    username: str = Form(""),
    password: str = Form(""),
    remember_me: str = Form(""),
    next: str = Form("/"),
    csrf_token: str = Form(""),
):
    if not _validate_csrf(csrf_token, request.cookies.get(CSRF_COOKIE)):
        return _forbidden()
    remember = remember_me.lower() in ("on", "1", "true", "yes")
    redirect_to = _safe_next(next)
    error_ctx = {"supabase_enabled": config.supabase_enabled, "next": redirect_to}

    client_ip = request.client.host if request.client else "unknown"
    if _check_rate_limit(client_ip):
        return render(request, "login.html", {
            **error_ctx, "error": "Muitas tentativas. Aguarde alguns minutos e tente novamente.",
        }, status_code=429)

    login = username.strip().lower()
    if not login or not password:
        return render(request, "login.html", {**error_ctx, "error": "Informe usuário e senha."}, status_code=400)

    if config.supabase_enabled:
        result = await supabase_sign_in(config, login, password)
        if "error" in result:
            _record_failed_login(client_ip)
            return render(request, "login.html", {**error_ctx, "error": result["error"]}, status_code=401)
        user = await link_supabase_user(db, result.get("user") or {})
    else:
        try:
            user = await authenticate_local(db, login, password)
        except AuthenticationError:
            _record_failed_login(client_ip)
            logger.info(f"Failed login for {login!r} from {client_ip}")
            return render(request, "login.html", {
                **error_ctx, "error": "Usuário ou senha incorretos.",
            }, status_code=401)

    token = await create_session(db, user.id, remember_me=remember, request=request)
    resp = RedirectResponse(url=redirect_to, status_code=303)
    _set_session_cookie(resp, token, remember)
    return resp


@app.get("/logout")
async def logout(request: Request, db: AsyncSession = Depends(get_db)):
    await destroy_session(db, get_session_token(request))
    resp = RedirectResponse(url="/login", status_code=303)
    resp.delete_cookie(SESSION_COOKIE)
    return resp


# ════════════════════════════════════════════════
# DASHBOARD
# ════════════════════════════════════════════════

@app.get("/", response_class=HTMLResponse)
async def dashboard(
    request: Request,
    rev: str | None = None,
    goal: str | None = None,
    filter: str | None = None,
    msg: str = "",
    error: str = "",
    gateway: Gateway = Depends(get_gateway),
):
    today_ = clock.today()
    current = month_key(today_)
    rev_key = _month_param(rev, current)
    goal_key = _month_param(goal, current)
    flt = _filter_param(filter)

    try:
        snapshot = await gateway.fetch_snapshot()
    except GatewayError as e:
        logger.error(f"Dashboard load failed: {e}")
        return render(request, "dashboard.html", {
            "error": "Não foi possível carregar os dados. Tente novamente.",
            "msg": "", "loaded": False,
        }, status_code=503)

    store = CookieFlagStore(request.cookies)
    alert = _alert_monitor(store).check(snapshot.orders)

    flow = monthly_cash_flow(snapshot.orders, snapshot.transactions, rev_key)
    goal_net = monthly_net(snapshot.orders, snapshot.transactions, goal_key)
    goal_value = snapshot.goals.get(goal_key, 0.0)

    response = render(request, "dashboard.html", {
        "loaded": True,
        "msg": msg,
        "error": error,
        "today": today_.isoformat(),
        "rev_key": rev_key,
        "rev_prev": shift_month(rev_key, -1),
        "rev_next": shift_month(rev_key, 1),
        "goal_key": goal_key,
        "goal_prev": shift_month(goal_key, -1),
        "goal_next": shift_month(goal_key, 1),
        "flow": flow,
        "goal": goal_progress(goal_net, goal_value),
        "has_goal": goal_key in snapshot.goals,
        "pending_receivables": global_pending_receivables(snapshot.orders),
        "counts": count_orders(snapshot.orders, today_, config.critical_days),
        "filter": flt,
        "filters": list(OrderFilter),
        "orders": [_order_view(o, today_) for o in filter_orders(snapshot.orders, flt, today_, config.critical_days)],
        "transactions": transactions_in_month(snapshot.transactions, rev_key),
        "alert": alert,
    })
    store.apply(response)
    return response


@app.get("/api/alerts")
async def api_alerts(request: Request, gateway: Gateway = Depends(get_gateway)):
    """Periodic recomputation tick polled by the dashboard."""
    try:
        orders = await gateway.fetch_orders()
    except GatewayError as e:
        logger.error(f"Alert tick failed: {e}")
        return JSONResponse({"show": False, "count": 0, "names": [], "error": "unavailable"}, status_code=503)
    store = CookieFlagStore(request.cookies)
    alert = _alert_monitor(store).check(orders)
    payload = {"show": alert is not None, "count": alert.count if alert else 0, "names": alert.names if alert else []}
    response = JSONResponse(payload)
    store.apply(response)
    return response


# ════════════════════════════════════════════════
# ORDERS
# ════════════════════════════════════════════════

_HEX_COLOR = re.compile(r"#[0-9a-fA-F]{6}")


def _form_bool(form, name: str) -> bool:
    return (form.get(name) or "").lower() in ("on", "1", "true", "yes")


def _order_in_from_form(form) -> OrderIn:
    roles = {
        role: ExtraIn(qty=int(to_float(form.get(f"role_{role.value}_qty"))),
                      cost=to_float(form.get(f"role_{role.value}_cost")))
        for role in ROLE_TYPES
    }
    extras = [
        ExtraIn(id=i, name=n.strip(), qty=int(to_float(q)), cost=to_float(c))
        for i, n, q, c in zip(
            form.getlist("extra_id"), form.getlist("extra_name"),
            form.getlist("extra_qty"), form.getlist("extra_cost"),
        )
        if n.strip() or to_float(c)
    ]
    keep = set(form.getlist("keep_note"))
    notes = [
        NoteIn(content=content, color=color, created_at=created)
        for idx, (content, color, created) in enumerate(zip(
            form.getlist("note_content"), form.getlist("note_color"), form.getlist("note_created"),
        ))
        if str(idx) in keep
    ]
    return OrderIn(
        order_id=(form.get("order_id") or "").strip(),
        client_name=form.get("client_name") or "",
        whatsapp=(form.get("whatsapp") or "").strip(),
        origin=(form.get("origin") or "").strip(),
        destination=(form.get("destination") or "").strip(),
        pickup_date=(form.get("pickup_date") or "").strip(),
        delivery_forecast=(form.get("delivery_forecast") or "").strip(),
        total_value=to_float(form.get("total_value")),
        driver_cost=to_float(form.get("driver_cost")),
        is_contract_signed=_form_bool(form, "is_contract_signed"),
        is_posted_marketplace=_form_bool(form, "is_posted_marketplace"),
        is_costs_paid=_form_bool(form, "is_costs_paid"),
        payment_deposit=_form_bool(form, "payment_deposit"),
        payment_pickup=_form_bool(form, "payment_pickup"),
        payment_delivery=_form_bool(form, "payment_delivery"),
        note_tag=form.get("note_tag") or "#334155",
        roles=roles,
        extras=extras,
        notes=notes,
        new_note=form.get("new_note") or "",
        note_color=form.get("note_color_new") or "#334155",
    )


def _parse_note_time(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return _utcnow()


def _apply_order_in(manager: OrderLifecycleManager, data: OrderIn) -> None:
    manager.update_fields(
        client_name=data.client_name,
        whatsapp=data.whatsapp,
        origin=data.origin,
        destination=data.destination,
        pickup_date=data.pickup_date,
        delivery_forecast=data.delivery_forecast,
        is_contract_signed=data.is_contract_signed,
        is_posted_marketplace=data.is_posted_marketplace,
        is_costs_paid=data.is_costs_paid,
        note_tag=data.note_tag,
    )
    manager.set_total_value(data.total_value)
    manager.set_driver_cost(data.driver_cost)
    manager.set_payment_status(
        deposit=data.payment_deposit, pickup=data.payment_pickup, delivery=data.payment_delivery,
    )
    for role, entry in data.roles.items():
        manager.set_role(role, entry.qty, entry.cost)
    manager.clear_generic_extras()
    for extra in data.extras:
        manager.add_generic_extra(extra.name, extra.qty, extra.cost, extra_id=extra.id)
    manager.set_notes([
        OrderNote(content=n.content, color=n.color, created_at=_parse_note_time(n.created_at))
        for n in data.notes
    ])
    if _HEX_COLOR.fullmatch(data.note_color):
        manager.select_note_color(data.note_color)
    manager.add_note(data.new_note)


def _form_context(manager: OrderLifecycleManager, error: str = "", error_field: str = "") -> dict:
    draft = manager.draft
    return {
        "draft": draft,
        "order": draft.order,
        "roles": [(role, *manager.role_data(role)) for role in ROLE_TYPES],
        "generic_extras": [e for e in draft.extras if e.type == ServiceType.OTHER],
        "preview_costs": manager.preview_costs(),
        "preview_profit": manager.preview_profit(),
        "stage": stage_label(draft.order.progress),
        "error": error,
        "error_field": error_field,
    }


@app.get("/orders/new", response_class=HTMLResponse)
async def order_new(request: Request, gateway: Gateway = Depends(get_gateway)):
    manager = OrderLifecycleManager(gateway, clock)
    manager.start_new()
    return render(request, "order_form.html", _form_context(manager))


@app.get("/orders/{order_id}/edit", response_class=HTMLResponse)
async def order_edit(request: Request, order_id: str, gateway: Gateway = Depends(get_gateway)):
    manager = OrderLifecycleManager(gateway, clock)
    try:
        manager.load(await _find_order(gateway, order_id))
    except GatewayError as e:
        logger.warning(f"Edit of {order_id} failed: {e}")
        return RedirectResponse(url=_with_flash("/", error="Ordem não encontrada."), status_code=303)
    return render(request, "order_form.html", _form_context(manager))


@app.post("/orders/save")
async def order_save(request: Request, gateway: Gateway = Depends(get_gateway)):
    form = await _checked_form(request)
    if form is None:
        return _forbidden()
    try:
        data = _order_in_from_form(form)
    except SchemaError as e:
        logger.warning(f"Rejected order form: {e}")
        return RedirectResponse(url=_with_flash("/", error="Formulário inválido."), status_code=303)

    manager = OrderLifecycleManager(gateway, clock)
    if data.order_id:
        try:
            manager.load(await _find_order(gateway, data.order_id))
        except GatewayError as e:
            logger.warning(f"Save of {data.order_id} failed: {e}")
            return RedirectResponse(url=_with_flash("/", error="Ordem não encontrada."), status_code=303)
    else:
        manager.start_new()
    _apply_order_in(manager, data)

    try:
        saved = await manager.submit()
    except ValidationError as e:
        return render(request, "order_form.html", _form_context(manager, e.message, e.field), status_code=400)
    except GatewayError:
        return render(request, "order_form.html", _form_context(
            manager, "Não foi possível salvar a ordem. Seus dados foram mantidos; tente novamente.",
        ), status_code=502)
    return RedirectResponse(url=_with_flash("/", msg=f"Ordem {saved.id} salva."), status_code=303)


@app.post("/orders/{order_id}/payment")
async def order_toggle_payment(request: Request, order_id: str, gateway: Gateway = Depends(get_gateway)):
    form = await _checked_form(request)
    if form is None:
        return _forbidden()
    back = _safe_next(form.get("next"))
    manager = OrderLifecycleManager(gateway, clock)
    try:
        manager.load(await _find_order(gateway, order_id))
        manager.toggle_payment(form.get("milestone") or "")
        await manager.submit()
    except ValueError:
        return RedirectResponse(url=_with_flash(back, error="Etapa de pagamento inválida."), status_code=303)
    except ViaCargoError as e:
        logger.warning(f"Payment toggle on {order_id} failed: {e}")
        return RedirectResponse(url=_with_flash(back, error="Não foi possível atualizar o pagamento."), status_code=303)
    return RedirectResponse(url=back, status_code=303)


@app.get("/orders/{order_id}/delete", response_class=HTMLResponse)
async def order_delete_confirm(request: Request, order_id: str, gateway: Gateway = Depends(get_gateway)):
    manager = OrderLifecycleManager(gateway, clock)
    try:
        manager.load(await _find_order(gateway, order_id))
    except GatewayError:
        return RedirectResponse(url=_with_flash("/", error="Ordem não encontrada."), status_code=303)
    manager.request_delete()
    return render(request, "confirm_delete.html", {"order": manager.draft.order})


@app.post("/orders/{order_id}/delete")
async def order_delete(request: Request, order_id: str, gateway: Gateway = Depends(get_gateway)):
    form = await _checked_form(request)
    if form is None:
        return _forbidden()
    if form.get("confirm") != "yes":
        return RedirectResponse(url=f"/orders/{order_id}/edit", status_code=303)
    manager = OrderLifecycleManager(gateway, clock)
    try:
        manager.load(await _find_order(gateway, order_id))
        manager.request_delete()
        await manager.confirm_delete()
    except ViaCargoError as e:
        logger.warning(f"Delete of {order_id} failed: {e}")
        return RedirectResponse(url=_with_flash("/", error="Não foi possível excluir a ordem."), status_code=303)
    return RedirectResponse(url=_with_flash("/", msg=f"Ordem {order_id} excluída."), status_code=303)


# ════════════════════════════════════════════════
# WORK-ORDER DOCUMENTS
# ════════════════════════════════════════════════

def _pdf_response(order, role: DocumentRole, content: bytes) -> Response:
    return Response(
        content, media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{document_filename(order, role)}"'},
    )


def _role_param(value: str | None) -> DocumentRole | None:
    try:
        return DocumentRole(value) if value else None
    except ValueError:
        return None


@app.get("/orders/{order_id}/document")
async def order_document(request: Request, order_id: str, role: str | None = None,
                         gateway: Gateway = Depends(get_gateway)):
    try:
        order = await _find_order(gateway, order_id)
    except GatewayError:
        return RedirectResponse(url=_with_flash("/", error="Ordem não encontrada."), status_code=303)
    doc_role = _role_param(role)
    if doc_role is None:
        return render(request, "document_form.html", {"order": order, "roles": list(DocumentRole)})
    return _pdf_response(order, doc_role, render_work_order(order, doc_role))


@app.post("/orders/{order_id}/document")
async def order_document_custom(request: Request, order_id: str, gateway: Gateway = Depends(get_gateway)):
    form = await _checked_form(request)
    if form is None:
        return _forbidden()
    doc_role = _role_param(form.get("role"))
    if doc_role is None:
        return RedirectResponse(url=f"/orders/{order_id}/document", status_code=303)
    try:
        order = await _find_order(gateway, order_id)
    except GatewayError:
        return RedirectResponse(url=_with_flash("/", error="Ordem não encontrada."), status_code=303)

    if doc_role is DocumentRole.DRIVER:
        data = DriverDocumentIn(**{k: form.get(k) or "" for k in DriverDocumentIn.model_fields if k != "freight_value"})
        freight = form.get("freight_value")
        signature = form.get("signature_image")
        driver = DriverData(
            **data.model_dump(exclude={"freight_value"}),
            freight_value=to_float(freight) if freight else None,
            signature_image=(await signature.read() or None) if hasattr(signature, "read") else None,
        )
        content = render_work_order(order, doc_role, driver=driver)
    else:
        data = TeamDocumentIn(
            quantity=int(to_float(form.get("quantity"))),
            scheduled_time=form.get("scheduled_time") or "",
            unit_cost=to_float(form.get("unit_cost")),
            work_location=form.get("work_location") or "origin",
            work_date=form.get("work_date") or "",
            items_list=form.get("items_list") or "",
            custom_message=form.get("custom_message") or "",
        )
        team = None
        if data.quantity > 0 or data.unit_cost > 0:
            team = TeamOrderConfig(**data.model_dump(exclude={"custom_message"}))
        content = render_work_order(order, doc_role, team=team, custom_message=data.custom_message)
    return _pdf_response(order, doc_role, content)


INVENTORY_TEXT_FIELDS = [k for k in InventoryDeclarationIn.model_fields if k not in ("items", "free_text_mode", "free_text")]


@app.get("/orders/{order_id}/inventory", response_class=HTMLResponse)
async def order_inventory(request: Request, order_id: str, gateway: Gateway = Depends(get_gateway)):
    try:
        order = await _find_order(gateway, order_id)
    except GatewayError:
        return RedirectResponse(url=_with_flash("/", error="Ordem não encontrada."), status_code=303)
    return render(request, "inventory_form.html", {
        "order": order, "declaration": InventoryDeclaration.from_order(order),
    })


@app.post("/orders/{order_id}/inventory")
async def order_inventory_pdf(request: Request, order_id: str, gateway: Gateway = Depends(get_gateway)):
    form = await _checked_form(request)
    if form is None:
        return _forbidden()
    try:
        order = await _find_order(gateway, order_id)
    except GatewayError:
        return RedirectResponse(url=_with_flash("/", error="Ordem não encontrada."), status_code=303)

    data = InventoryDeclarationIn(
        **{k: (form.get(k) or "").strip() for k in INVENTORY_TEXT_FIELDS},
        items=[
            InventoryItemIn(qty=max(0, int(to_float(q))), description=d.strip())
            for q, d in zip(form.getlist("item_qty"), form.getlist("item_description"))
        ],
        free_text_mode=_form_bool(form, "free_text_mode"),
        free_text=form.get("free_text") or "",
    )
    # Uploads that are not images are ignored
    images = [
        await f.read() for f in form.getlist("images")
        if hasattr(f, "read") and (f.content_type or "").startswith("image/")
    ]
    declaration = InventoryDeclaration(
        **data.model_dump(exclude={"items"}),
        items=[InventoryItem(**i.model_dump()) for i in data.items],
        images=[b for b in images if b],
    )
    content = render_inventory_declaration(order, declaration, issued=clock.today())
    logger.info(f"Inventory declaration issued for {order_id} ({len(declaration.listed_items())} items)")
    return Response(
        content, media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{declaration_filename(declaration)}"'},
    )


# ════════════════════════════════════════════════
# TRANSACTIONS & GOALS
# ════════════════════════════════════════════════

@app.post("/transactions/save")
async def transaction_save(request: Request, gateway: Gateway = Depends(get_gateway)):
    form = await _checked_form(request)
    if form is None:
        return _forbidden()
    back = _safe_next(form.get("next"))
    try:
        data = TransactionIn(
            description=(form.get("description") or "").strip(),
            amount=abs(to_float(form.get("amount"))),
            type=form.get("type") or TransactionType.INCOME.value,
            date=(form.get("date") or "").strip() or clock.today().isoformat(),
            category=(form.get("category") or "").strip() or None,
        )
    except SchemaError:
        return RedirectResponse(url=_with_flash(back, error="Tipo de lançamento inválido."), status_code=303)
    if not data.description or data.amount <= 0:
        return RedirectResponse(url=_with_flash(back, error="Informe descrição e valor."), status_code=303)

    try:
        await gateway.create_transaction(Transaction(
            id=f"TX-{clock.now_ms()}",
            description=data.description, amount=data.amount,
            type=data.type, date=data.date, category=data.category,
        ))
    except GatewayError:
        return RedirectResponse(url=_with_flash(back, error="Não foi possível salvar o lançamento."), status_code=303)
    return RedirectResponse(url=back, status_code=303)


@app.post("/transactions/{transaction_id}/delete")
async def transaction_delete(request: Request, transaction_id: str, gateway: Gateway = Depends(get_gateway)):
    form = await _checked_form(request)
    if form is None:
        return _forbidden()
    back = _safe_next(form.get("next"))
    try:
        await gateway.delete_transaction(transaction_id)
    except GatewayError:
        return RedirectResponse(url=_with_flash(back, error="Não foi possível excluir o lançamento."), status_code=303)
    return RedirectResponse(url=back, status_code=303)


@app.post("/goals/save")
async def goal_save(request: Request, gateway: Gateway = Depends(get_gateway)):
    form = await _checked_form(request)
    if form is None:
        return _forbidden()
    key = _month_param(form.get("month_key"), "")
    value = to_float(form.get("goal_value"))
    back = _safe_next(form.get("next"))
    if not key or value <= 0:
        return RedirectResponse(url=_with_flash(back, error="A meta deve ser maior que zero."), status_code=303)
    try:
        await gateway.set_monthly_goal(key, value)
    except GatewayError:
        return RedirectResponse(url=_with_flash(back, error="Não foi possível salvar a meta."), status_code=303)
    return RedirectResponse(url=back, status_code=303)
