"""
Schemas Pydantic per l'entità VehicleInward
Progetto: DealerDesk (Gestionale Concessionaria)

Definisce gli schemi di validazione e serializzazione per l'accettazione
veicoli e il tracciamento delle lavorazioni degli installatori.
"""

from enum import Enum
import datetime
import re
import uuid
from decimal import Decimal
from typing import Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
)


class VehicleStatus(str, Enum):
    """Stati operativi noti di una scheda veicolo."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    UNDER_INSTALLATION = "under_installation"
    INSTALLATION_COMPLETE = "installation_complete"
    COMPLETED = "completed"
    DELIVERED = "delivered"
    COMPLETE_AND_DELIVERED = "complete_and_delivered"
    DELIVERED_FINAL = "delivered_final"


class Priority(str, Enum):
    """Priorità della lavorazione."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# Stati visibili nella coda di lavoro degli installatori
INSTALLER_QUEUE_STATUSES = (
    VehicleStatus.PENDING.value,
    VehicleStatus.IN_PROGRESS.value,
    VehicleStatus.UNDER_INSTALLATION.value,
)


# -------------------------------------------------------------------
# Funzioni di normalizzazione e validazione
# -------------------------------------------------------------------

def normalize_registration(registration: Optional[str]) -> Optional[str]:
    """
    Normalizza la targa del veicolo.

    Converte in maiuscolo, rimuove spazi e trattini e valida il formato.

    Raises:
        ValueError: Se il formato non è valido
    """
    if registration is None:
        return None

    normalized = registration.strip().upper().replace(" ", "").replace("-", "")

    if not re.match(r"^[A-Z0-9]{2,20}$", normalized):
        raise ValueError(
            "Targa non valida: deve contenere 2-20 caratteri alfanumerici"
        )

    return normalized


def normalize_phone(phone: Optional[str]) -> Optional[str]:
    """Rimuove spazi e trattini; ammette un '+' iniziale e 7-15 cifre."""
    if phone is None:
        return None
    normalized = re.sub(r"[\s\-()]", "", phone)
    if not re.match(r"^\+?\d{7,15}$", normalized):
        raise ValueError("Numero di telefono non valido")
    return normalized


# -------------------------------------------------------------------
# Righe lavorazione
# -------------------------------------------------------------------
class LineItem(BaseModel):
    """Accessorio/installazione richiesta con prezzo."""

    product: str = Field(..., min_length=1, max_length=255)
    brand: Optional[str] = Field(None, max_length=100)
    price: Decimal = Field(..., ge=0, description="Prezzo dell'articolo")
    department: Optional[str] = Field(None, max_length=100)

    def to_json(self) -> dict:
        """Rappresentazione salvata nella colonna JSON."""
        return {
            "product": self.product,
            "brand": self.brand or "",
            "price": str(self.price),
            "department": self.department or "",
        }


# -------------------------------------------------------------------
# Schemas Base
# -------------------------------------------------------------------
class VehicleInwardBase(BaseModel):
    """Campi condivisi tra creazione e lettura."""

    customer_name: str = Field(..., min_length=1, max_length=255)
    customer_phone: str = Field(..., max_length=20)
    customer_email: Optional[str] = Field(None, max_length=255)
    registration_number: str = Field(..., min_length=2, max_length=20)
    make: Optional[str] = Field(None, max_length=100)
    model: str = Field(..., min_length=1, max_length=100)
    year: Optional[int] = Field(None, ge=1900)
    color: Optional[str] = Field(None, max_length=50)
    vehicle_type: Optional[str] = Field(None, max_length=50)
    odometer_reading: Optional[int] = Field(None, ge=0)
    priority: Priority = Priority.MEDIUM
    issues_reported: Optional[str] = None
    estimated_completion_date: Optional[datetime.date] = None
    tax_amount: Optional[Decimal] = Field(None, ge=0)
    due_date: Optional[datetime.date] = None
    notes: Optional[str] = None

    _normalize_registration = field_validator("registration_number", mode="before")(
        normalize_registration
    )
    _normalize_phone = field_validator("customer_phone", mode="before")(normalize_phone)

    @field_validator("year")
    @classmethod
    def validate_year(cls, v: Optional[int]) -> Optional[int]:
        """L'anno non può superare l'anno corrente + 1."""
        if v is None:
            return v
        max_year = datetime.datetime.now().year + 1
        if v > max_year:
            raise ValueError(f"L'anno non può essere superiore a {max_year}")
        return v


class VehicleInwardCreate(VehicleInwardBase):
    """Schema per l'accettazione di un nuovo veicolo."""

    line_items: list[LineItem] = Field(default_factory=list)


class VehicleInwardUpdate(BaseModel):
    """
    Schema per l'aggiornamento di una scheda (PATCH).

    Tutti i campi sono opzionali. I campi contabili hanno endpoint dedicati.
    """

    customer_name: Optional[str] = Field(None, min_length=1, max_length=255)
    customer_phone: Optional[str] = Field(None, max_length=20)
    customer_email: Optional[str] = Field(None, max_length=255)
    registration_number: Optional[str] = Field(None, min_length=2, max_length=20)
    make: Optional[str] = Field(None, max_length=100)
    model: Optional[str] = Field(None, min_length=1, max_length=100)
    year: Optional[int] = Field(None, ge=1900)
    color: Optional[str] = Field(None, max_length=50)
    vehicle_type: Optional[str] = Field(None, max_length=50)
    odometer_reading: Optional[int] = Field(None, ge=0)
    priority: Optional[Priority] = None
    issues_reported: Optional[str] = None
    estimated_completion_date: Optional[datetime.date] = None
    tax_amount: Optional[Decimal] = Field(None, ge=0)
    line_items: Optional[list[LineItem]] = None
    notes: Optional[str] = None

    _normalize_registration = field_validator("registration_number", mode="before")(
        normalize_registration
    )
    _normalize_phone = field_validator("customer_phone", mode="before")(normalize_phone)


class VehicleStatusUpdate(BaseModel):
    """Cambio stato operativo (installatori, responsabili)."""

    status: VehicleStatus


class VehicleInwardRead(BaseModel):
    """Schema di lettura di una scheda veicolo."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    customer_name: str = Field(..., serialization_alias="customerName")
    customer_phone: str = Field(..., serialization_alias="customerPhone")
    customer_email: Optional[str] = Field(None, serialization_alias="customerEmail")
    registration_number: str = Field(..., serialization_alias="vehicleNumber")
    make: Optional[str] = None
    model: str
    year: Optional[int] = None
    color: Optional[str] = None
    vehicle_type: Optional[str] = Field(None, serialization_alias="vehicleType")
    odometer_reading: Optional[int] = Field(None, serialization_alias="odometerReading")
    priority: str
    issues_reported: Optional[str] = Field(None, serialization_alias="issuesReported")
    estimated_completion_date: Optional[datetime.date] = Field(
        None, serialization_alias="expectedDelivery"
    )
    status: str
    line_items: list[LineItem] = Field(default_factory=list, serialization_alias="products")
    billing_status: str = Field(..., serialization_alias="billingStatus")
    due_date: Optional[datetime.date] = Field(None, serialization_alias="dueDate")
    notes: Optional[str] = None
    completed_at: Optional[datetime.datetime] = Field(None, serialization_alias="completedAt")
    created_at: datetime.datetime = Field(..., serialization_alias="createdAt")
    updated_at: datetime.datetime = Field(..., serialization_alias="updatedAt")

    @field_validator("line_items", mode="before")
    @classmethod
    def tolerate_legacy_line_items(cls, v):
        """Scarta le righe storiche senza prodotto invece di fallire."""
        if not v:
            return []
        return [item for item in v if isinstance(item, dict) and item.get("product")]

    @computed_field(alias="totalAmount")
    @property
    def total_amount(self) -> Decimal:
        """Somma dei prezzi delle lavorazioni."""
        return sum((item.price for item in self.line_items), Decimal("0"))


class VehicleInwardList(BaseModel):
    """Schema per la lista paginata delle schede veicolo."""

    items: list[VehicleInwardRead] = Field(default_factory=list)
    total: int = Field(..., serialization_alias="totalItems")
    page: int = Field(..., serialization_alias="currentPage")
    per_page: int = Field(..., serialization_alias="itemsPerPage")
    total_pages: int = Field(..., serialization_alias="totalPages")
