import io
import re
from datetime import date

import pytest
from PIL import Image

from viacargo.documents import (
    DriverData, InventoryDeclaration, InventoryItem, TeamOrderConfig, declaration_filename, document_filename,
    render_inventory_declaration, render_work_order, role_display_name, role_payment,
)
from viacargo.domain import DocumentRole, ServiceOrder, ServiceType
from viacargo.lifecycle import OrderDraft


def _page_count(pdf: bytes) -> int:
    return len(re.findall(rb"/Type\s*/Page\b", pdf))


@pytest.fixture
def order(make_order, make_extra):
    return make_order(
        id="OS-2024-DOC",
        client_name="Joana Prado",
        whatsapp="(41) 99999-0000",
        origin="Rua das Flores, 100 - Curitiba",
        destination="Av. Brasil, 2000 - Joinville",
        delivery_forecast="2024-06-07",
        driver_cost=600,
        extras=[
            make_extra(ServiceType.HELPER, 2, 120, "Ajudantes"),
            make_extra(ServiceType.PACKER, 1, 90, "Embaladores"),
            make_extra(ServiceType.OTHER, 10, 5, "Caixas"),
        ],
    )


class TestRolePayment:

    def test_driver_uses_driver_cost(self, order):
        assert role_payment(order, DocumentRole.DRIVER) == ("FRETE (MOTORISTA)", 600)

    def test_driver_freight_override(self, order):
        driver = DriverData(full_name="Carlos", freight_value=750.0)
        assert role_payment(order, "driver", driver=driver) == ("FRETE (MOTORISTA)", 750.0)

    def test_team_role_sums_its_extras(self, order):
        label, amount = role_payment(order, DocumentRole.HELPER)
        assert label == "SERVIÇOS (AJUDANTES)"
        assert amount == 240
        assert role_payment(order, DocumentRole.ASSEMBLER)[1] == 0

    def test_general_sums_all_extras(self, order):
        assert role_payment(order, DocumentRole.GENERAL) == ("SERVIÇOS (GERAL)", 380)

    def test_team_config_overrides(self, order):
        team = TeamOrderConfig(quantity=3, unit_cost=110)
        assert role_payment(order, DocumentRole.PACKER, team=team)[1] == 330

    def test_team_cost_never_negative(self):
        assert TeamOrderConfig(quantity=-2, unit_cost=50).calculated_cost == 0
        assert TeamOrderConfig(quantity=2, unit_cost=-50).calculated_cost == 0

    def test_display_names(self):
        assert role_display_name(DocumentRole.ASSEMBLER) == "Montadores"
        assert role_display_name(DocumentRole.DRIVER) == "Motorista"
        assert role_display_name(DocumentRole.GENERAL) == "Geral"


class TestRender:

    @pytest.mark.parametrize("role", list(DocumentRole))
    def test_every_role_renders(self, order, role):
        pdf = render_work_order(order, role)
        assert pdf.startswith(b"%PDF")
        assert _page_count(pdf) >= 1

    def test_team_with_details(self, order):
        team = TeamOrderConfig(
            quantity=2, scheduled_time="08:30", unit_cost=150, work_location="destination",
            work_date="2024-06-05", items_list="Geladeira\nSofá 3 lugares\nCaixas (20)",
        )
        pdf = render_work_order(order, DocumentRole.HELPER, team=team, custom_message="Levar cintas.")
        assert pdf.startswith(b"%PDF")

    def test_driver_document(self, order):
        driver = DriverData(
            full_name="Carlos Lima", cpf="123.456.789-00", cnh="0123456789", rntrc="12345678",
            category="E", phone="41988887777", vehicle="VW 24.280", plate="ABC1D23", uf="PR",
            validity="2027-01-31", inventory_list="Mudança residencial completa",
        )
        pdf = render_work_order(order, DocumentRole.DRIVER, driver=driver)
        assert pdf.startswith(b"%PDF")

    def test_long_lists_flow_onto_more_pages(self, order):
        items = "\n".join(f"Item {i}: caixa de utensílios de cozinha, frágil" for i in range(200))
        short = render_work_order(order, DocumentRole.GENERAL)
        long = render_work_order(order, DocumentRole.GENERAL, team=TeamOrderConfig(quantity=1, items_list=items))
        assert _page_count(short) == 1
        assert _page_count(long) > 1

    def test_maps_link_embedded(self, order):
        pdf = render_work_order(order, DocumentRole.HELPER)
        assert b"google.com/maps" in pdf


class TestFinalizedOnly:

    def test_draft_rejected(self, order):
        with pytest.raises(ValueError):
            render_work_order(OrderDraft(order=order), DocumentRole.DRIVER)

    @pytest.mark.parametrize("changes", [{"id": ""}, {"created_at": None}])
    def test_unsubmitted_order_rejected(self, order, changes):
        for name, value in changes.items():
            setattr(order, name, value)
        with pytest.raises(ValueError):
            render_work_order(order, DocumentRole.HELPER)

    def test_new_order_rejected(self):
        with pytest.raises(ValueError):
            render_work_order(ServiceOrder(client_name="X"), DocumentRole.GENERAL)


def test_filename(order):
    assert document_filename(order, DocumentRole.PACKER) == "OS-2024-DOC-EMBALADOR.pdf"
    assert document_filename(order, "driver") == "OS-2024-DOC-MOTORISTA.pdf"


def _png(color="red") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (40, 30), color).save(buf, format="PNG")
    return buf.getvalue()


class TestInventoryDeclaration:

    def test_prefilled_from_order(self, order):
        declaration = InventoryDeclaration.from_order(order, driver_name="Carlos Lima")
        assert declaration.client_name == "Joana Prado"
        assert declaration.client_phone == "(41) 99999-0000"
        assert declaration.destination == "Av. Brasil, 2000 - Joinville"
        assert declaration.pickup_date == "2024-06-05"
        assert declaration.driver_name == "Carlos Lima"

    def test_blank_items_are_not_listed(self):
        declaration = InventoryDeclaration(items=[
            InventoryItem(2, "Geladeira"), InventoryItem(0, "  "), InventoryItem(0, "Quadros"), InventoryItem(3, ""),
        ])
        assert [(i.qty, i.description) for i in declaration.listed_items()] == [(2, "Geladeira"), (0, "Quadros"), (3, "")]

    def test_table_renders(self, order):
        declaration = InventoryDeclaration.from_order(order, items=[InventoryItem(1, "Sofá 3 lugares")])
        pdf = render_inventory_declaration(order, declaration, issued=date(2024, 6, 10))
        assert pdf.startswith(b"%PDF")
        assert b"google.com/maps" in pdf

    @pytest.mark.parametrize("free_text", ["1 cama box\n2 criados-mudos", ""])
    def test_free_text_mode(self, order, free_text):
        declaration = InventoryDeclaration.from_order(order, free_text_mode=True, free_text=free_text)
        assert render_inventory_declaration(order, declaration).startswith(b"%PDF")

    def test_empty_list(self, order):
        assert render_inventory_declaration(order, InventoryDeclaration()).startswith(b"%PDF")

    def test_long_inventory_flows_onto_more_pages(self, order):
        items = [InventoryItem(i % 4 + 1, f"Caixa {i} com utensílios de cozinha e roupas de cama") for i in range(120)]
        short = render_inventory_declaration(order, InventoryDeclaration.from_order(order, items=items[:3]))
        long = render_inventory_declaration(order, InventoryDeclaration.from_order(order, items=items))
        assert _page_count(long) >= _page_count(short) + 2

    def test_images_attached(self, order):
        plain = render_inventory_declaration(order, InventoryDeclaration.from_order(order))
        with_images = render_inventory_declaration(
            order, InventoryDeclaration.from_order(order, images=[_png(), _png("blue"), _png("green")]),
        )
        assert len(re.findall(rb"/Subtype\s*/Image", with_images)) >= 3
        assert not re.findall(rb"/Subtype\s*/Image", plain)

    def test_draft_rejected(self, order):
        with pytest.raises(ValueError):
            render_inventory_declaration(OrderDraft(order=order), InventoryDeclaration())

    def test_filename(self):
        assert declaration_filename(InventoryDeclaration(client_name="João da Conceição")) == \
            "Declaracao_Joao_da_Conceicao.pdf"
        assert declaration_filename(InventoryDeclaration(client_name="  ")) == "Declaracao_Cliente.pdf"
