"""End-to-end tests through the FastAPI app with the operator account."""

import re

import pytest
from fastapi.testclient import TestClient

from viacargo import main
from viacargo.config import AppConfig
from viacargo.errors import GatewayError
from viacargo.gateway import Gateway

ORDER_ID = re.compile(r"OS-2024-[0-9A-F]{12}")


class UnavailableGateway(Gateway):
    """Reads come back empty; every write fails like a dropped connection."""

    async def fetch_orders(self):
        return []

    async def fetch_transactions(self):
        return []

    async def fetch_monthly_goals(self):
        return {}

    async def _down(self, operation):
        raise GatewayError(operation, "connection reset")

    async def create_order(self, order):
        await self._down("create_order")

    async def update_order(self, order):
        await self._down("update_order")

    async def delete_order(self, order_id):
        await self._down("delete_order")

    async def create_transaction(self, transaction):
        await self._down("create_transaction")

    async def delete_transaction(self, transaction_id):
        await self._down("delete_transaction")

    async def set_monthly_goal(self, month_key, value):
        await self._down("set_monthly_goal")


@pytest.fixture
def client(monkeypatch, clock):
    monkeypatch.setattr(main, "clock", clock)
    with TestClient(main.app) as c:
        yield c


def login(client) -> str:
    client.get("/login")
    token = client.cookies.get(main.CSRF_COOKIE)
    r = client.post("/login", data={
        "username": "operador", "password": "segredo-123", "csrf_token": token, "next": "/",
    }, follow_redirects=False)
    assert r.status_code == 303
    return token


@pytest.fixture
def token(client):
    return login(client)


def save_order(client, token, **fields) -> str:
    data = {
        "csrf_token": token,
        "client_name": "Paulo Mendes",
        "whatsapp": "41999990000",
        "origin": "Curitiba",
        "destination": "Ponta Grossa",
        "pickup_date": "2024-07-20",
        "total_value": "1500",
        "driver_cost": "400",
        "role_helper_qty": "2",
        "role_helper_cost": "100",
        "extra_id": [""],
        "extra_name": ["Caixas"],
        "extra_qty": ["10"],
        "extra_cost": ["4"],
    }
    data.update(fields)
    r = client.post("/orders/save", data=data, follow_redirects=False)
    assert r.status_code == 303, r.text
    return ORDER_ID.search(r.headers["location"]).group(0)


class TestAuth:

    def test_dashboard_requires_login(self, client):
        r = client.get("/?filter=active", follow_redirects=False)
        assert r.status_code == 303
        assert r.headers["location"].startswith("/login?next=/")

    def test_api_returns_401(self, client):
        r = client.get("/api/alerts")
        assert r.status_code == 401
        assert r.json() == {"error": "not authenticated"}

    def test_wrong_password(self, client):
        client.get("/login")
        r = client.post("/login", data={
            "username": "operador", "password": "errada", "csrf_token": client.cookies.get(main.CSRF_COOKIE),
        })
        assert r.status_code == 401
        assert "Usuário ou senha incorretos." in r.text

    def test_missing_credentials(self, client):
        client.get("/login")
        r = client.post("/login", data={"username": "", "password": "", "csrf_token": client.cookies.get(main.CSRF_COOKIE)})
        assert r.status_code == 400

    def test_login_without_csrf_token(self, client):
        client.get("/login")
        r = client.post("/login", data={"username": "operador", "password": "segredo-123", "csrf_token": "x"})
        assert r.status_code == 403

    def test_login_and_logout(self, client, token):
        assert client.get("/").status_code == 200
        r = client.get("/logout", follow_redirects=False)
        assert r.headers["location"] == "/login"
        assert client.get("/", follow_redirects=False).status_code == 303

    def test_security_headers(self, client):
        r = client.get("/login")
        assert r.headers["X-Frame-Options"] == "DENY"
        assert r.headers["X-Content-Type-Options"] == "nosniff"


class TestOrders:

    def test_create_and_edit(self, client, token):
        order_id = save_order(client, token, client_name="Helena Dias")
        page = client.get(f"/orders/{order_id}/edit")
        assert page.status_code == 200
        assert order_id in page.text
        assert 'value="Helena Dias"' in page.text
        assert 'name="role_helper_qty" type="number" min="0" value="2"' in page.text
        assert 'value="Caixas"' in page.text
        assert "Helena Dias" in client.get("/").text

    def test_validation_error_keeps_input(self, client, token):
        r = client.post("/orders/save", data={
            "csrf_token": token, "client_name": "  ", "origin": "Lapa", "pickup_date": "2024-07-01",
        })
        assert r.status_code == 400
        assert "Informe o nome do cliente." in r.text
        assert 'value="Lapa"' in r.text

    def test_bad_csrf_token(self, client, token):
        r = client.post("/orders/save", data={"csrf_token": "forjado", "client_name": "X", "pickup_date": "2024-07-01"})
        assert r.status_code == 403

    def test_non_numeric_quantities_are_zero(self, client, token):
        order_id = save_order(client, token, role_helper_qty="inf", extra_qty=["1e400"], total_value="nan")
        page = client.get(f"/orders/{order_id}/edit").text
        assert 'name="role_helper_qty" type="number" min="0" value="0"' in page

    def test_oversized_total_is_rejected(self, client, token):
        r = client.post("/orders/save", data={
            "csrf_token": token, "client_name": "Rita Alves", "pickup_date": "2024-07-01", "total_value": "1e12",
        })
        assert r.status_code == 400
        assert "Valor numérico inválido." in r.text
        assert 'value="Rita Alves"' in r.text

    def test_backend_failure_keeps_form(self, client, token):
        main.app.dependency_overrides[main.get_gateway] = lambda: UnavailableGateway()
        try:
            r = client.post("/orders/save", data={
                "csrf_token": token, "client_name": "Cliente Falha", "pickup_date": "2024-07-01",
                "total_value": "800", "new_note": "Levar lona",
            })
        finally:
            main.app.dependency_overrides.pop(main.get_gateway, None)
        assert r.status_code == 502
        assert "Não foi possível salvar a ordem." in r.text
        assert 'value="Cliente Falha"' in r.text
        assert "Levar lona" in r.text
        assert "Cliente Falha" not in client.get("/").text

    def test_currency_follows_configuration(self):
        usd = main.currency_filter(AppConfig(currency="USD", locale="en-US"))
        assert usd(1234.5) == "US$ 1,234.50"
        assert main.currency_filter(AppConfig())(1234.5) == "R$ 1.234,50"

    def test_notes_are_kept_and_added(self, client, token):
        order_id = save_order(client, token, new_note="Portão azul", note_color_new="#ef4444")
        page = client.get(f"/orders/{order_id}/edit").text
        assert "Portão azul" in page
        assert 'name="note_color" value="#ef4444"' in page

    def test_payment_toggle_updates_progress(self, client, token):
        order_id = save_order(client, token)
        r = client.post(f"/orders/{order_id}/payment", data={
            "csrf_token": token, "milestone": "deposit", "next": "/",
        }, follow_redirects=False)
        assert r.status_code == 303
        assert r.headers["location"] == "/"
        page = client.get(f"/orders/{order_id}/edit").text
        assert 'name="payment_deposit" checked' in page
        assert "· 20%" in page

    def test_payment_toggle_rejects_unknown_milestone(self, client, token):
        order_id = save_order(client, token)
        r = client.post(f"/orders/{order_id}/payment", data={
            "csrf_token": token, "milestone": "bonus", "next": "/",
        }, follow_redirects=False)
        assert "error=" in r.headers["location"]

    def test_unknown_order_redirects(self, client, token):
        r = client.get("/orders/OS-2024-NAOEXISTE/edit", follow_redirects=False)
        assert r.status_code == 303
        assert "error=" in r.headers["location"]


class TestDelete:

    def test_two_step_delete(self, client, token):
        order_id = save_order(client, token, client_name="Para Excluir")

        confirm = client.get(f"/orders/{order_id}/delete")
        assert confirm.status_code == 200
        assert order_id in confirm.text

        r = client.post(f"/orders/{order_id}/delete", data={"csrf_token": token, "confirm": "no"},
                        follow_redirects=False)
        assert r.headers["location"] == f"/orders/{order_id}/edit"
        assert client.get(f"/orders/{order_id}/edit").status_code == 200

        r = client.post(f"/orders/{order_id}/delete", data={"csrf_token": token, "confirm": "yes"},
                        follow_redirects=False)
        assert r.status_code == 303
        assert "msg=" in r.headers["location"]
        assert client.get(f"/orders/{order_id}/edit", follow_redirects=False).status_code == 303


class TestAlerts:

    def test_alert_is_debounced(self, client, token, clock):
        save_order(client, token, client_name="Coleta Urgente", pickup_date="2024-06-12")

        first = client.get("/api/alerts").json()
        assert first["show"] is True
        assert "Coleta Urgente" in first["names"]
        assert first["count"] == len(first["names"])

        assert client.get("/api/alerts").json()["show"] is False
        clock.advance(hours=4, minutes=59)
        assert client.get("/api/alerts").json()["show"] is False
        clock.advance(minutes=2)
        assert client.get("/api/alerts").json()["show"] is True

    def test_dashboard_banner(self, client, token):
        save_order(client, token, client_name="Banner Cliente", pickup_date="2024-06-11")
        html = client.get("/").text
        assert "Banner Cliente" in html
        assert "ordem(ns) crítica(s)" in html
        assert client.get("/api/alerts").json()["show"] is False


class TestTransactionsAndGoals:

    def test_add_and_delete_transaction(self, client, token, clock):
        r = client.post("/transactions/save", data={
            "csrf_token": token, "description": "Pedágio BR-376", "amount": "-80",
            "type": "expense", "date": "2024-06-15", "next": "/",
        }, follow_redirects=False)
        assert r.headers["location"] == "/"
        assert "Pedágio BR-376" in client.get("/?rev=2024-06").text

        tx_id = f"TX-{clock.now_ms()}"
        r = client.post(f"/transactions/{tx_id}/delete", data={"csrf_token": token, "next": "/"},
                        follow_redirects=False)
        assert r.headers["location"] == "/"
        assert "Pedágio BR-376" not in client.get("/?rev=2024-06").text

    @pytest.mark.parametrize("fields", [
        {"description": "", "amount": "10", "type": "income"},
        {"description": "Frete", "amount": "0", "type": "income"},
        {"description": "Frete", "amount": "10", "type": "doacao"},
    ])
    def test_invalid_transaction(self, client, token, fields):
        r = client.post("/transactions/save", data={"csrf_token": token, "next": "/", **fields},
                        follow_redirects=False)
        assert "error=" in r.headers["location"]

    def test_goal(self, client, token):
        r = client.post("/goals/save", data={
            "csrf_token": token, "month_key": "2024-05", "goal_value": "0", "next": "/",
        }, follow_redirects=False)
        assert "error=" in r.headers["location"]

        r = client.post("/goals/save", data={
            "csrf_token": token, "month_key": "2024-05", "goal_value": "5000", "next": "/?goal=2024-05",
        }, follow_redirects=False)
        assert r.headers["location"] == "/?goal=2024-05"
        assert "R$ 5.000,00" in client.get("/?goal=2024-05").text


class TestDocuments:

    def test_role_picker(self, client, token):
        order_id = save_order(client, token)
        r = client.get(f"/orders/{order_id}/document")
        assert r.status_code == 200
        assert "text/html" in r.headers["content-type"]

    def test_quick_pdf(self, client, token):
        order_id = save_order(client, token)
        r = client.get(f"/orders/{order_id}/document?role=helper")
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/pdf"
        assert f"{order_id}-AJUDANTE.pdf" in r.headers["content-disposition"]
        assert r.content.startswith(b"%PDF")

    def test_driver_pdf(self, client, token):
        order_id = save_order(client, token)
        r = client.post(f"/orders/{order_id}/document", data={
            "csrf_token": token, "role": "driver", "full_name": "Carlos Lima", "cpf": "123.456.789-00",
            "cnh": "0123456789", "plate": "ABC1D23", "freight_value": "650",
        })
        assert r.status_code == 200
        assert r.content.startswith(b"%PDF")

    def test_team_pdf(self, client, token):
        order_id = save_order(client, token)
        r = client.post(f"/orders/{order_id}/document", data={
            "csrf_token": token, "role": "assembler", "quantity": "2", "unit_cost": "120",
            "work_location": "destination", "items_list": "Guarda-roupa\nCama box", "custom_message": "Levar parafusadeira",
        })
        assert r.status_code == 200
        assert f"{order_id}-MONTADOR.pdf" in r.headers["content-disposition"]

    def test_inventory_form_is_prefilled(self, client, token):
        order_id = save_order(client, token, client_name="Márcia Teles")
        r = client.get(f"/orders/{order_id}/inventory")
        assert r.status_code == 200
        assert 'name="client_name" value="Márcia Teles"' in r.text
        assert 'name="origin" value="Curitiba"' in r.text

    def test_inventory_declaration_pdf(self, client, token):
        order_id = save_order(client, token, client_name="Márcia Teles")
        r = client.post(f"/orders/{order_id}/inventory", data={
            "csrf_token": token, "client_name": "Márcia Teles", "client_document": "123.456.789-00",
            "driver_name": "Carlos Lima", "plate": "ABC1D23",
            "item_qty": ["2", "0", "x"], "item_description": ["Geladeira", "", "Caixas"],
        })
        assert r.status_code == 200
        assert r.headers["content-type"] == "application/pdf"
        assert 'filename="Declaracao_Marcia_Teles.pdf"' in r.headers["content-disposition"]
        assert r.content.startswith(b"%PDF")

    def test_inventory_requires_csrf(self, client, token):
        order_id = save_order(client, token)
        r = client.post(f"/orders/{order_id}/inventory", data={"csrf_token": "forjado", "free_text_mode": "on"})
        assert r.status_code == 403
