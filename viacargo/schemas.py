from pydantic import BaseModel, Field

from .domain import ServiceType, TransactionType


class ExtraIn(BaseModel):
    id: str = ""
    name: str = ""
    qty: int = 0
    cost: float = 0.0


class NoteIn(BaseModel):
    content: str
    color: str = "#334155"
    created_at: str = ""


class OrderIn(BaseModel):
    order_id: str = ""
    client_name: str = ""
    whatsapp: str = ""
    origin: str = ""
    destination: str = ""
    pickup_date: str = ""
    delivery_forecast: str = ""

    total_value: float = 0.0
    driver_cost: float = 0.0

    is_contract_signed: bool = False
    is_posted_marketplace: bool = False
    is_costs_paid: bool = False
    payment_deposit: bool = False
    payment_pickup: bool = False
    payment_delivery: bool = False

    note_tag: str = "#334155"
    roles: dict[ServiceType, ExtraIn] = Field(default_factory=dict)
    extras: list[ExtraIn] = Field(default_factory=list)
    notes: list[NoteIn] = Field(default_factory=list)
    new_note: str = ""
    note_color: str = "#334155"


class TransactionIn(BaseModel):
    description: str = ""
    amount: float = 0.0
    type: TransactionType = TransactionType.INCOME
    date: str = ""
    category: str | None = None


class TeamDocumentIn(BaseModel):
    quantity: int = 0
    scheduled_time: str = ""
    unit_cost: float = 0.0
    work_location: str = "origin"
    work_date: str = ""
    items_list: str = ""
    custom_message: str = ""


class DriverDocumentIn(BaseModel):
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


class InventoryItemIn(BaseModel):
    qty: int = 0
    description: str = ""


class InventoryDeclarationIn(BaseModel):
    client_name: str = ""
    client_document: str = ""
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
    items: list[InventoryItemIn] = Field(default_factory=list)
    free_text_mode: bool = False
    free_text: str = ""
