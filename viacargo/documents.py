"""
Work-order documents: printable PDFs handed to the driver or a labor team,
plus the moving declaration and goods inventory the client signs at pickup.

Rendered straight onto a reportlab canvas (A4, built-in Helvetica/Times so
no font files are needed).  Only a finalized order is accepted: something
that went through the lifecycle manager's submission and has both an id and
a creation timestamp.  Pixel layout is not contractual; the content is.
"""

import io
import re
import unicodedata
import urllib.parse
from dataclasses import dataclass, field
from datetime import date

from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import ImageReader, simpleSplit
from reportlab.pdfgen import canvas

from .domain import DocumentRole, ROLE_LABELS, ServiceOrder, ServiceType
from .lifecycle import OrderDraft
from .rules import format_currency
from .utils import MONTH_NAMES, format_date_br, today, whatsapp_link

# ─── COLOR PALETTE ───
PRIMARY = HexColor("#1e3a8a")
SECONDARY = HexColor("#1f2937")
TEXT_DARK = HexColor("#374151")
TEXT_LIGHT = HexColor("#6b7280")
RULE = HexColor("#c8c8c8")
PANEL = HexColor("#f1f5f9")
PANEL_BORDER = HexColor("#cbd5e1")
ALERT_BG = HexColor("#fef2f2")
ALERT_TEXT = HexColor("#dc2626")
WHITE = HexColor("#ffffff")

W, H = A4
MARGIN = 20 * mm
CONTENT_W = W - 2 * MARGIN
BOTTOM = 25 * mm

COMPANY = "VIACARGO TRANSPORTADORA"
TAGLINE = "SOLUÇÕES EM LOGÍSTICA"
FOOTER = "CNPJ: 54.826.258/0001-70   |   Contato: (41) 8747-1778"
MAPS_URL = "https://www.google.com/maps/search/?api=1&query="

ROLE_TITLES = {
    DocumentRole.DRIVER: "MOTORISTA",
    DocumentRole.HELPER: "AJUDANTE",
    DocumentRole.ASSEMBLER: "MONTADOR",
    DocumentRole.PACKER: "EMBALADOR",
    DocumentRole.GENERAL: "GERAL",
}

# Which extras each team role is paid for; GENERAL takes all of them
ROLE_EXTRA_TYPE = {
    DocumentRole.HELPER: ServiceType.HELPER,
    DocumentRole.ASSEMBLER: ServiceType.ASSEMBLER,
    DocumentRole.PACKER: ServiceType.PACKER,
}

DRIVER_TERM = (
    "Eu, {name}, portador da CNH nº {cnh}, CPF {cpf}, e RNTRC {rntrc}, declaro que:\n"
    "1. Fui contratado pela VIACARGO para realizar o transporte de bens móveis conforme "
    "a ordem de serviço anexa.\n"
    "2. Estou ciente de que a VIACARGO atua como intermediadora logística, sendo a execução "
    "do transporte de minha inteira responsabilidade.\n"
    "3. Assumo a responsabilidade integral pela carga desde a coleta até a entrega: "
    "acondicionamento adequado, condução segura, preservação dos itens e cumprimento do roteiro.\n"
    "4. Comprometo-me a arcar com danos, extravios ou perdas decorrentes de conduta negligente, "
    "imprudente ou imperita durante o transporte.\n"
    "5. Eventuais sinistros serão comunicados imediatamente à VIACARGO e à autoridade competente.\n"
    "6. Imagens e registros poderão ser solicitados antes, durante e após o serviço.\n"
    "7. Meus documentos estão válidos e possuo condições técnicas e legais para a atividade.\n"
    "Por ser verdade, firmo o presente termo para que produza seus efeitos legais."
)

LEGAL_NAME = "VIACARGO INTERMEDIAÇÃO LOGÍSTICA & TRANSPORTES LTDA"

CONTENT_DECLARATION = (
    "Declaro, sob as penas da lei, que os bens relacionados no presente inventário são de minha "
    "exclusiva propriedade e compõem minha MUDANÇA RESIDENCIAL, tratando-se de itens usados para uso "
    "pessoal e doméstico. Declaro expressamente que a carga não possui destinação comercial ou "
    "industrial, não configurando fato gerador de ICMS (Não Incidência), servindo este documento para "
    "fins de transporte e fiscalização em todo o território nacional."
)

CONFERENCE_TERM = (
    "O cliente declara que conferiu a lista acima no momento da coleta e que os itens correspondem "
    "à totalidade dos bens embarcados. A Viacargo atua como intermediadora logística, conectando o "
    "cliente ao transportador autônomo identificado acima."
)


@dataclass
class TeamOrderConfig:
    quantity: int = 0
    scheduled_time: str = ""          # HH:MM
    unit_cost: float = 0.0
    work_location: str = "origin"     # origin | destination
    work_date: str = ""               # YYYY-MM-DD
    items_list: str = ""

    @property
    def calculated_cost(self) -> float:
        return max(0, self.quantity) * max(0.0, self.unit_cost)


@dataclass
class DriverData:
    full_name: str = ""
    cpf: str = ""
    cnh: str = ""
    rntrc: str = ""
    category: str = ""
    phone: str = ""
    vehicle: str = ""
    plate: str = ""
    uf: str = ""
    validity: str = ""
    freight_value: float | None = None
    inventory_list: str = ""
    signature_image: bytes | None = None


@dataclass
class InventoryItem:
    qty: int = 1
    description: str = ""


@dataclass
class InventoryDeclaration:
    """Moving declaration signed by the client at pickup, with the goods inventory."""
    client_name: str = ""
    client_document: str = ""    # CPF or CNPJ
    client_phone: str = ""
    origin: str = ""
    destination: str = ""
    pickup_date: str = ""
    driver_name: str = ""
    driver_cpf: str = ""
    vehicle: str = ""
    plate: str = ""
    cnh: str = ""
    rntrc: str = ""
    items: list[InventoryItem] = field(default_factory=list)
    free_text_mode: bool = False
    free_text: str = ""
    images: list[bytes] = field(default_factory=list)
    city: str = "Curitiba"

    @classmethod
    def from_order(cls, order: ServiceOrder, **fields) -> "InventoryDeclaration":
        values = dict(
            client_name=order.client_name, client_phone=order.whatsapp,
            origin=order.origin, destination=order.destination, pickup_date=order.pickup_date,
        )
        values.update(fields)
        return cls(**values)

    def listed_items(self) -> list[InventoryItem]:
        return [i for i in self.items if i.qty > 0 or i.description.strip()]


def role_display_name(role: DocumentRole) -> str:
    role = DocumentRole(role)
    if role in ROLE_EXTRA_TYPE:
        return ROLE_LABELS[ROLE_EXTRA_TYPE[role]]
    if role is DocumentRole.DRIVER:
        return "Motorista"
    return "Geral"


def role_payment(order: ServiceOrder, role: DocumentRole, team: TeamOrderConfig | None = None,
                 driver: DriverData | None = None) -> tuple[str, float]:
    """(label, amount) printed in the payment box for ``role``."""
    role = DocumentRole(role)
    if role is DocumentRole.DRIVER:
        amount = order.financials.driver_cost
        if driver is not None and driver.freight_value is not None:
            amount = driver.freight_value
        return "FRETE (MOTORISTA)", amount
    label = f"SERVIÇOS ({role_display_name(role).upper()})"
    if team is not None:
        return label, team.calculated_cost
    if role is DocumentRole.GENERAL:
        extras = order.financials.extras
    else:
        extras = [e for e in order.financials.extras if e.type == ROLE_EXTRA_TYPE[role]]
    return label, sum(e.qty * e.cost for e in extras)


def document_filename(order: ServiceOrder, role: DocumentRole) -> str:
    return f"{order.id}-{ROLE_TITLES[DocumentRole(role)]}.pdf"


def declaration_filename(declaration: InventoryDeclaration) -> str:
    name = unicodedata.normalize("NFKD", declaration.client_name).encode("ascii", "ignore").decode()
    name = re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_")
    return f"Declaracao_{name or 'Cliente'}.pdf"


def _check_finalized(order) -> None:
    if isinstance(order, OrderDraft):
        raise ValueError("Work orders are only issued for submitted orders, not drafts")
    if not isinstance(order, ServiceOrder) or not order.is_finalized:
        raise ValueError("Order must have an id and a creation timestamp")


class WorkOrderDocument:
    def __init__(self, order: ServiceOrder, title: str, issued: date | None = None):
        self.order = order
        self.title = title
        self.issued = issued or today()
        self.buf = io.BytesIO()
        self.c = canvas.Canvas(self.buf, pagesize=A4)
        self.c.setTitle(f"OS {order.id}")
        self.c.setAuthor(COMPANY)
        self.y = H
        self._start_page()

    # ─── PAGE INFRASTRUCTURE ───

    def _start_page(self):
        c = self.c
        c.setFillColor(SECONDARY)
        c.rect(0, H - 40 * mm, W, 40 * mm, fill=1, stroke=0)
        c.setFillColor(WHITE)
        c.setFont("Helvetica-Bold", 18)
        c.drawString(MARGIN, H - 18 * mm, COMPANY)
        c.setFont("Helvetica", 10)
        c.setFillColor(HexColor("#93c5fd"))
        c.drawString(MARGIN, H - 24 * mm, TAGLINE)
        c.setFillColor(WHITE)
        c.drawRightString(W - MARGIN, H - 16 * mm, f"OS: {self.order.id}")
        c.drawRightString(W - MARGIN, H - 22 * mm, f"Emissão: {self.issued.strftime('%d/%m/%Y')}")

        c.setFillColor(PRIMARY)
        c.roundRect(MARGIN, H - 49 * mm, CONTENT_W, 12 * mm, 2 * mm, fill=1, stroke=0)
        c.setFillColor(WHITE)
        title = self.title.upper()
        size = 12
        while size > 7 and c.stringWidth(title, "Helvetica-Bold", size) > CONTENT_W - 6 * mm:
            size -= 0.5
        c.setFont("Helvetica-Bold", size)
        c.drawCentredString(W / 2, H - 44.5 * mm, title)

        c.setFillColor(TEXT_LIGHT)
        c.setFont("Helvetica-Bold", 8)
        c.drawCentredString(W / 2, 10 * mm, FOOTER)
        self.y = H - 60 * mm

    def new_page(self):
        self.c.showPage()
        self._start_page()

    def ensure_space(self, needed: float):
        if self.y - needed < BOTTOM:
            self.new_page()

    def finish(self) -> bytes:
        self.c.save()
        return self.buf.getvalue()

    # ─── PRIMITIVES ───

    def section(self, title: str):
        self.ensure_space(14 * mm)
        c = self.c
        c.setFont("Helvetica-Bold", 10)
        c.setFillColor(SECONDARY)
        c.drawString(MARGIN, self.y, title)
        c.setStrokeColor(RULE)
        c.setLineWidth(0.5)
        c.line(MARGIN, self.y - 2 * mm, W - MARGIN, self.y - 2 * mm)
        self.y -= 8 * mm

    def field_row(self, left: str, right: str = "", link: str = ""):
        self.ensure_space(6 * mm)
        c = self.c
        c.setFont("Helvetica", 9)
        c.setFillColor(TEXT_DARK)
        c.drawString(MARGIN, self.y, left)
        if link:
            width = c.stringWidth(left, "Helvetica", 9)
            c.linkURL(link, (MARGIN, self.y - 1 * mm, MARGIN + width, self.y + 3 * mm), relative=0)
        if right:
            c.drawString(MARGIN + CONTENT_W / 2, self.y, right)
        self.y -= 6 * mm

    def paragraph(self, text: str, font="Helvetica", size=9, color=TEXT_DARK, indent=0, leading=None):
        """Wrapped text; breaks onto new pages as needed."""
        leading = leading or size * 1.45
        width = CONTENT_W - indent
        for block in (text or "").splitlines() or [""]:
            for line in simpleSplit(block, font, size, width) or [""]:
                self.ensure_space(leading)
                self.c.setFont(font, size)
                self.c.setFillColor(color)
                self.c.drawString(MARGIN + indent, self.y, line)
                self.y -= leading

    def item_table(self, rows: list[tuple[str, str]], header=("QTD", "DESCRIÇÃO DOS BENS")):
        """Quantity/description grid; the header row repeats on every page."""
        c = self.c
        qty_w = 18 * mm
        desc_w = CONTENT_W - qty_w - 6 * mm
        line_h = 4.5 * mm

        def draw_header():
            top = self.y
            c.setFillColor(PANEL)
            c.setStrokeColor(PANEL_BORDER)
            c.rect(MARGIN, top - 7 * mm, CONTENT_W, 7 * mm, fill=1, stroke=1)
            c.setFillColor(SECONDARY)
            c.setFont("Helvetica-Bold", 8)
            c.drawCentredString(MARGIN + qty_w / 2, top - 4.8 * mm, header[0])
            c.drawString(MARGIN + qty_w + 3 * mm, top - 4.8 * mm, header[1])
            self.y = top - 7 * mm

        self.ensure_space(20 * mm)
        draw_header()
        for qty, description in rows:
            lines = simpleSplit(description, "Helvetica", 9, desc_w) or [""]
            height = len(lines) * line_h + 2.5 * mm
            if self.y - height < BOTTOM:
                self.new_page()
                draw_header()
            top = self.y
            c.setStrokeColor(PANEL_BORDER)
            c.rect(MARGIN, top - height, CONTENT_W, height, fill=0, stroke=1)
            c.line(MARGIN + qty_w, top - height, MARGIN + qty_w, top)
            c.setFillColor(TEXT_DARK)
            c.setFont("Helvetica-Bold", 9)
            c.drawCentredString(MARGIN + qty_w / 2, top - 5 * mm, qty)
            c.setFont("Helvetica", 9)
            for i, line in enumerate(lines):
                c.drawString(MARGIN + qty_w + 3 * mm, top - 5 * mm - i * line_h, line)
            self.y = top - height
        self.y -= 6 * mm

    def payment_box(self, label: str, amount: float):
        self.ensure_space(40 * mm)
        c = self.c
        top = self.y
        c.setFillColor(SECONDARY)
        c.roundRect(MARGIN, top - 28 * mm, CONTENT_W, 28 * mm, 3 * mm, fill=1, stroke=0)
        c.setFillColor(HexColor("#9ca3af"))
        c.setFont("Helvetica", 9)
        c.drawString(MARGIN + 10 * mm, top - 9 * mm, "VALOR A RECEBER / PAGAMENTO")
        c.setFillColor(WHITE)
        c.setFont("Helvetica-Bold", 11)
        c.drawString(MARGIN + 10 * mm, top - 17 * mm, label)
        c.setFillColor(HexColor("#93c5fd"))
        c.setFont("Helvetica-Bold", 20)
        c.drawRightString(W - MARGIN - 10 * mm, top - 17 * mm, format_currency(amount))
        self.y = top - 38 * mm

    def company_signature(self):
        self.ensure_space(30 * mm)
        c = self.c
        line_y = self.y - 18 * mm
        c.setFillColor(SECONDARY)
        c.setFont("Times-Italic", 18)
        c.drawCentredString(W / 2, line_y + 3 * mm, "Viacargo Transportadora LTDA")
        c.setStrokeColor(TEXT_DARK)
        c.line(W / 2 - 50 * mm, line_y, W / 2 + 50 * mm, line_y)
        c.setFillColor(TEXT_DARK)
        c.setFont("Helvetica", 8)
        c.drawCentredString(W / 2, line_y - 5 * mm, "RESPONSÁVEL OPERACIONAL")
        self.y = line_y - 12 * mm


def _maps_link(address: str) -> str:
    return MAPS_URL + urllib.parse.quote(address or "", safe="")


def _route_section(doc: WorkOrderDocument, order: ServiceOrder):
    doc.section("ROTA E CRONOGRAMA")
    doc.field_row(f"Origem: {order.origin}", f"Coleta: {format_date_br(order.pickup_date)}",
                  link=_maps_link(order.origin))
    doc.field_row(f"Destino: {order.destination}", f"Prev. Entrega: {format_date_br(order.delivery_forecast)}",
                  link=_maps_link(order.destination))
    doc.y -= 4 * mm


def _render_team(order: ServiceOrder, role: DocumentRole, team: TeamOrderConfig | None,
                 custom_message: str) -> bytes:
    doc = WorkOrderDocument(order, f"ORDEM DE SERVIÇO - {ROLE_TITLES[role]}")

    doc.section("DADOS DO CLIENTE")
    doc.field_row(order.client_name, f"WhatsApp: {order.whatsapp}" if order.whatsapp else "")
    if order.whatsapp:
        doc.field_row(whatsapp_link(order.whatsapp), link=whatsapp_link(order.whatsapp))
    doc.y -= 4 * mm

    if team is not None:
        doc.section("DETALHES DA EQUIPE")
        doc.field_row(f"Quantidade de Profissionais: {team.quantity}",
                      f"Horário no Local: {team.scheduled_time}")
        doc.field_row(f"Valor Unitário: {format_currency(team.unit_cost)}",
                      f"Valor Total: {format_currency(team.calculated_cost)}")
        where = order.destination if team.work_location == "destination" else order.origin
        doc.field_row(f"Local de Trabalho: {where}", f"Data: {format_date_br(team.work_date)}")
        if team.items_list.strip():
            doc.y -= 2 * mm
            doc.section("LISTA DE ITENS")
            doc.paragraph(team.items_list, size=8)
        doc.y -= 4 * mm

    _route_section(doc, order)

    if custom_message.strip():
        doc.section("INSTRUÇÕES DA EQUIPE")
        doc.paragraph(custom_message, font="Helvetica-Bold", size=10, color=ALERT_TEXT, indent=3 * mm)
        doc.y -= 4 * mm

    label, amount = role_payment(order, role, team)
    doc.payment_box(label, amount)
    doc.company_signature()
    return doc.finish()


def _render_driver(order: ServiceOrder, driver: DriverData) -> bytes:
    doc = WorkOrderDocument(order, "Ordem de Serviço de Transporte (OS)")

    doc.section("DADOS DO MOTORISTA")
    doc.field_row(f"Nome: {driver.full_name}", f"CPF: {driver.cpf}")
    doc.field_row(f"CNH: {driver.cnh}", f"Categoria: {driver.category}")
    doc.field_row(f"Validade CNH: {format_date_br(driver.validity)}", f"Telefone: {driver.phone}")
    doc.field_row(f"Veículo: {driver.vehicle}", f"Placa: {driver.plate} ({driver.uf})")
    doc.field_row(f"RNTRC: {driver.rntrc}")
    doc.y -= 4 * mm

    doc.section("DADOS DA OPERAÇÃO")
    doc.field_row(f"Cliente: {order.client_name}",
                  f"WhatsApp: {order.whatsapp}" if order.whatsapp else "")
    doc.y -= 2 * mm
    _route_section(doc, order)

    if driver.inventory_list.strip():
        doc.section("LISTA DE ITENS")
        doc.paragraph(driver.inventory_list, size=8)
        doc.y -= 4 * mm

    label, amount = role_payment(order, DocumentRole.DRIVER, driver=driver)
    doc.payment_box(label, amount)

    doc.section("TERMO DE RESPONSABILIDADE DO MOTORISTA AUTÔNOMO")
    doc.paragraph(DRIVER_TERM.format(
        name=driver.full_name, cnh=driver.cnh, cpf=driver.cpf, rntrc=driver.rntrc,
    ), size=8)
    doc.y -= 6 * mm
    doc.paragraph("Local e data: ____________________________________________", size=10)

    doc.ensure_space(35 * mm)
    c = doc.c
    line_y = doc.y - 25 * mm
    if driver.signature_image:
        c.drawImage(ImageReader(io.BytesIO(driver.signature_image)), W / 2 + 10 * mm, line_y + 1 * mm,
                    width=40 * mm, height=18 * mm, preserveAspectRatio=True, mask="auto")
    c.setStrokeColor(SECONDARY)
    c.line(MARGIN + 5 * mm, line_y, MARGIN + 70 * mm, line_y)
    c.line(W / 2 + 5 * mm, line_y, W / 2 + 70 * mm, line_y)
    c.setFont("Helvetica-Bold", 8)
    c.setFillColor(TEXT_DARK)
    c.drawString(MARGIN + 5 * mm, line_y - 5 * mm, "Assinatura do Motorista (Presencial)")
    c.drawString(W / 2 + 5 * mm, line_y - 5 * mm, "Via Cargo (Emissor)")
    doc.y = line_y - 10 * mm
    return doc.finish()


def render_work_order(order, role: DocumentRole, *, team: TeamOrderConfig | None = None,
                      driver: DriverData | None = None, custom_message: str = "") -> bytes:
    """PDF bytes of the work order for ``role``.

    Raises ValueError for a draft or an order that was never submitted.
    """
    _check_finalized(order)
    role = DocumentRole(role)
    if role is DocumentRole.DRIVER:
        return _render_driver(order, driver or DriverData())
    return _render_team(order, role, team, custom_message or "")


def _long_date(d: date) -> str:
    return f"{d.day} de {MONTH_NAMES[d.month - 1]} de {d.year}"


def _image_grid(doc: WorkOrderDocument, images: list[bytes]):
    doc.section("ANEXOS / IMAGENS")
    box_w = (CONTENT_W - 6 * mm) / 2
    box_h = 60 * mm
    row_top = doc.y
    for index, data in enumerate(images):
        if index % 2 == 0:
            doc.ensure_space(box_h + 4 * mm)
            row_top = doc.y
        x = MARGIN + (index % 2) * (box_w + 6 * mm)
        doc.c.drawImage(ImageReader(io.BytesIO(data)), x, row_top - box_h, width=box_w, height=box_h,
                        preserveAspectRatio=True, anchor="n", mask="auto")
        doc.y = row_top - box_h - 6 * mm


def _declaration_signatures(doc: WorkOrderDocument, declaration: InventoryDeclaration):
    doc.ensure_space(45 * mm)
    c = doc.c
    line_y = doc.y - 22 * mm
    signers = (
        (MARGIN + 5 * mm, declaration.client_name.strip() or "Assinatura do Cliente", "CONTRATANTE"),
        (W / 2 + 5 * mm, declaration.driver_name.strip() or "Assinatura do Motorista", "TRANSPORTADOR"),
    )
    for x, name, party in signers:
        c.setStrokeColor(SECONDARY)
        c.line(x, line_y, x + 65 * mm, line_y)
        c.setFillColor(TEXT_DARK)
        c.setFont("Helvetica-Bold", 8)
        c.drawCentredString(x + 32.5 * mm, line_y - 5 * mm, name)
        c.setFillColor(TEXT_LIGHT)
        c.setFont("Helvetica", 7)
        c.drawCentredString(x + 32.5 * mm, line_y - 9 * mm, party)
    c.setFillColor(SECONDARY)
    c.setFont("Helvetica-Bold", 8)
    c.drawCentredString(W / 2, line_y - 18 * mm, LEGAL_NAME)
    doc.y = line_y - 24 * mm


def render_inventory_declaration(order, declaration: InventoryDeclaration, issued: date | None = None) -> bytes:
    """PDF bytes of the moving declaration and goods inventory for ``order``.

    In free-text mode the inventory is printed as written; otherwise as a
    table of the items that have a quantity or a description.  Raises
    ValueError for a draft or an order that was never submitted.
    """
    _check_finalized(order)
    d = declaration
    doc = WorkOrderDocument(order, "Declaração de Transporte de Mudança Residencial e Inventário de Bens", issued)
    doc.paragraph(f"Empresa Responsável: {LEGAL_NAME}", font="Helvetica-Bold", color=SECONDARY)
    doc.y -= 3 * mm

    doc.section("1. DADOS DO CLIENTE / PROPRIETÁRIO")
    doc.field_row(f"Nome: {d.client_name}", f"CPF/CNPJ: {d.client_document}")
    doc.field_row(f"Telefone: {d.client_phone}")
    doc.y -= 3 * mm

    doc.section("2. DADOS DA VIAGEM")
    doc.field_row(f"Origem: {d.origin}", link=_maps_link(d.origin) if d.origin else "")
    doc.field_row(f"Destino: {d.destination}", link=_maps_link(d.destination) if d.destination else "")
    doc.field_row(f"Data da Coleta: {format_date_br(d.pickup_date)}")
    doc.y -= 3 * mm

    doc.section("3. DADOS DO MOTORISTA")
    doc.field_row(f"Motorista: {d.driver_name}", f"CPF: {d.driver_cpf}")
    doc.field_row(f"Veículo: {d.vehicle}", f"Placa: {d.plate}")
    doc.field_row(f"CNH Registro: {d.cnh}", f"RNTRC: {d.rntrc}")
    doc.y -= 3 * mm

    doc.section("4. DECLARAÇÃO DE CONTEÚDO")
    doc.paragraph(CONTENT_DECLARATION, size=8.5)
    doc.y -= 4 * mm

    doc.section("RELATÓRIO DE INVENTÁRIO")
    if d.free_text_mode:
        doc.paragraph(d.free_text.strip() or "Nenhum item informado.")
        doc.y -= 4 * mm
    else:
        items = d.listed_items()
        if items:
            doc.item_table([(str(i.qty), i.description.strip()) for i in items])
        else:
            doc.paragraph("Lista de itens vazia.", color=TEXT_LIGHT)
            doc.y -= 4 * mm
    if d.images:
        _image_grid(doc, d.images)

    doc.section("5. TERMO DE RESPONSABILIDADE E CONFERÊNCIA")
    doc.paragraph(CONFERENCE_TERM, size=8.5)
    doc.y -= 4 * mm
    doc.paragraph(f"{d.city}, {_long_date(doc.issued)}.", size=10)
    _declaration_signatures(doc, d)
    return doc.finish()
