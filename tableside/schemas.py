"""
Pydantic Schemas for Documents and Request/Response Validation

Two groups live here:
- Document entities (Session, LineItem, ExtraBatch, MenuItem) that mirror
  the wire shape existing clients read and write. Field names are
  camelCase on the wire and snake_case in Python.
- API request/response schemas for the HTTP surface.

Each document entity has exactly one ``from_document`` decoder: a fixed,
total mapping from a raw stored record to the typed entity in which every
absent field gets a documented default.
"""

from datetime import datetime
from enum import Enum
from typing import Any, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


# =============================================================================
# ENUMS
# =============================================================================

class SessionStatus(str, Enum):
    """Primary lifecycle of a dining session."""
    ACTIVE = "active"
    BILL_REQUESTED = "bill-requested"
    CLOSED = "closed"


class KitchenStatus(str, Enum):
    """Advisory preparation stage of the most recent batch."""
    WAITING = "waiting"
    PREPARING = "preparing"
    SERVED = "served"


class BillStatus(str, Enum):
    """Bill approval sub-protocol. ``None`` on the document means no request yet."""
    PENDING = "pending"
    ACCEPTED = "accepted"
    DOWNLOADED = "downloaded"


class Portion(str, Enum):
    HALF = "Half"
    FULL = "Full"
    NOT_APPLICABLE = "N/A"


class SpiceLevel(str, Enum):
    SWEET = "Sweet"
    MEDIUM = "Medium"
    SPICY = "Spicy"


class FoodType(str, Enum):
    VEG = "Veg"
    NON_VEG = "Non-Veg"


class MenuCategory(str, Enum):
    STARTER = "starter"
    INDIAN_BREAD = "indian-bread"
    RICE = "rice"
    DAL = "dal"
    RAITA = "raita"
    NOODLES = "noodles"
    ICE_CREAM = "ice-cream"


DEFAULT_IMAGE_PATH = "/images/default.jpg"
PLACEHOLDER_IMAGE = (
    "https://images.unsplash.com/photo-1504674900247-0877df9cc836"
    "?auto=format&fit=crop&q=80&w=800"
)


def _enum_or_default(enum_cls: type[Enum], value: Any, default: Any) -> Any:
    try:
        return enum_cls(value)
    except ValueError:
        return default


# =============================================================================
# DOCUMENT ENTITIES
# =============================================================================

class DocumentModel(BaseModel):
    """camelCase on the wire, snake_case attributes in Python."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class LineItem(DocumentModel):
    """
    One ordered line, embedded in a session.

    The price is captured when the line is staged and frozen from then
    on; later menu price changes never touch it.
    """
    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str = Field(..., min_length=1)
    portion: Portion = Portion.NOT_APPLICABLE
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    spice_level: Optional[SpiceLevel] = None

    @property
    def line_total(self) -> float:
        return self.price * self.quantity

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExtraBatch(DocumentModel):
    """Immutable snapshot of items added after the initial order."""
    batch_id: str
    items: List[LineItem] = Field(default_factory=list)
    batch_total: float = 0.0
    timestamp: Optional[datetime] = None

    def to_document(self) -> dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "items": [item.to_document() for item in self.items],
            "batchTotal": self.batch_total,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


class Session(DocumentModel):
    """
    One dining session (one table visit). The stored document is the
    single source of truth; instances of this class are decoded copies.
    """
    id: str
    customer_name: str = ""
    number_of_people: int = 0
    table_number: int = 0
    session_key: str = Field(default="", alias="sessionId")
    session_status: SessionStatus = SessionStatus.ACTIVE
    session_items: List[LineItem] = Field(default_factory=list)
    session_total: float = 0.0
    status: KitchenStatus = KitchenStatus.WAITING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    extras_batches: List[ExtraBatch] = Field(default_factory=list)
    bill_status: Optional[BillStatus] = None
    bill_requested_at: Optional[datetime] = None
    bill_generated_at: Optional[datetime] = None
    has_new_extras: bool = False

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "Session":
        """
        Decode a stored session record.

        Defaults: empty name/key, zero counts and totals, ``active``
        session, ``waiting`` kitchen, no batches, no bill, ``updatedAt``
        falling back to ``createdAt``.
        """
        created_at = data.get("createdAt")
        bill_status = data.get("billStatus")
        return cls.model_validate({
            "id": doc_id,
            "customerName": data.get("customerName") or "",
            "numberOfPeople": data.get("numberOfPeople") or 0,
            "tableNumber": data.get("tableNumber") or 0,
            "sessionId": data.get("sessionId") or "",
            "sessionStatus": _enum_or_default(
                SessionStatus, data.get("sessionStatus"), SessionStatus.ACTIVE
            ),
            "sessionItems": data.get("sessionItems") or [],
            "sessionTotal": data.get("sessionTotal") or 0,
            "status": _enum_or_default(
                KitchenStatus, data.get("status"), KitchenStatus.WAITING
            ),
            "createdAt": created_at,
            "updatedAt": data.get("updatedAt") or created_at,
            "extrasBatches": data.get("extrasBatches") or [],
            "billStatus": _enum_or_default(BillStatus, bill_status, None) if bill_status else None,
            "billRequestedAt": data.get("billRequestedAt"),
            "billGeneratedAt": data.get("billGeneratedAt"),
            "hasNewExtras": data.get("hasNewExtras") is True,
        })

    @property
    def all_items(self) -> list[LineItem]:
        """Original items first, then each batch in append order."""
        items = list(self.session_items)
        for batch in self.extras_batches:
            items.extend(batch.items)
        return items

    @property
    def is_open(self) -> bool:
        return self.session_status != SessionStatus.CLOSED


class MenuPrice(BaseModel):
    full: float = 0.0
    half: Optional[float] = None


class MenuItem(DocumentModel):
    """A catalogue entry. Read-only to diners."""
    id: str
    name: str
    mr_name: str = Field(default="", alias="mr_name")
    description: str = ""
    mr_description: str = Field(default="", alias="mr_description")
    price: MenuPrice = Field(default_factory=MenuPrice)
    category: MenuCategory = MenuCategory.STARTER
    image: str = PLACEHOLDER_IMAGE
    no_portion: bool = False
    spice_level: SpiceLevel = SpiceLevel.MEDIUM
    food_type: Optional[FoodType] = None

    @classmethod
    def from_document(cls, doc_id: str, data: dict[str, Any]) -> "MenuItem":
        """
        Decode a stored menu record.

        Prices come from the nested ``price`` map, or from the flat
        ``full``/``half`` fields older imports wrote. A zero half price
        means "no half portion". Missing or unknown category, spice level
        and image fall back to ``starter``, ``Medium`` and a placeholder.
        """
        price = data.get("price")
        if isinstance(price, dict):
            full, half = price.get("full"), price.get("half")
        else:
            full, half = data.get("full"), data.get("half")

        image = data.get("image")
        if not image or image == DEFAULT_IMAGE_PATH:
            image = PLACEHOLDER_IMAGE

        return cls.model_validate({
            "id": doc_id,
            "name": data.get("name") or "Unnamed Item",
            "mr_name": data.get("mr_name") or "",
            "description": data.get("description") or "",
            "mr_description": data.get("mr_description") or "",
            "price": {
                "full": float(full or 0),
                "half": float(half) if half else None,
            },
            "category": _enum_or_default(
                MenuCategory, data.get("category"), MenuCategory.STARTER
            ),
            "image": image,
            "noPortion": data.get("noPortion") in (True, "true"),
            "spiceLevel": _enum_or_default(
                SpiceLevel, data.get("spiceLevel"), SpiceLevel.MEDIUM
            ),
            "foodType": _enum_or_default(FoodType, data.get("foodType"), None),
        })

    def price_for(self, portion: Portion) -> float:
        """Half falls back to full when the item has no half price."""
        if portion == Portion.HALF:
            return self.price.half or self.price.full
        return self.price.full

    def display_name(self, language: str = "en") -> str:
        if language == "mr" and self.mr_name:
            return self.mr_name
        return self.name


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class SessionCreate(BaseModel):
    """Start a session with the diner's first order."""
    table_number: Optional[int] = Field(None, examples=[5])
    customer_name: str = Field(..., examples=["Asha"])
    number_of_people: int = Field(..., examples=[2])
    items: List[LineItem] = Field(default_factory=list)


class ExtraBatchCreate(BaseModel):
    """Items added to an active session after the initial order."""
    items: List[LineItem] = Field(default_factory=list)


class KitchenStatusUpdate(BaseModel):
    status: KitchenStatus


class ChefLogin(BaseModel):
    email: str = Field(..., examples=["chef@restaurant.com"])
    password: str


class MenuItemCreate(BaseModel):
    """Chef-side menu entry."""
    name: str = Field(..., max_length=100, examples=["Paneer Tikka"])
    mr_name: str = ""
    description: str = Field(default="", max_length=300)
    mr_description: str = ""
    full: float = Field(default=0.0, ge=0, examples=[270])
    half: Optional[float] = Field(None, ge=0, examples=[150])
    image: str = ""
    no_portion: bool = False
    category: MenuCategory = MenuCategory.STARTER
    spice_level: SpiceLevel = SpiceLevel.MEDIUM
    food_type: Optional[FoodType] = None


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class RecoveryResponse(BaseModel):
    outcome: str
    message: str
    session: Optional[Session] = None


class InvoiceLineResponse(BaseModel):
    name: str
    portion: str
    quantity: int
    price: float
    line_total: float
    extra: bool = False


class BillResponse(BaseModel):
    """Computed bill, amounts rounded to 2 decimals for display."""
    session_id: str
    invoice_number: str
    invoice_date: Optional[datetime]
    table_number: int
    customer_name: str
    bill_status: Optional[BillStatus]
    items: List[InvoiceLineResponse]
    subtotal: float
    cgst: float
    sgst: float
    service_charge: float
    grand_total: float
    reconciled: bool


class ChefLoginResponse(BaseModel):
    access_token: str
    token_type: str = "chef"


class SessionListResponse(BaseModel):
    total: int
    active: List[Session]
    closed: List[Session]


class ClearClosedResponse(BaseModel):
    success: bool
    message: str
    deleted_count: int
    failed: List[str] = Field(default_factory=list)
    archived: bool = True


class BulkImportResponse(BaseModel):
    success: bool
    message: str
    deleted_count: int
    added_count: int


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    environment: str
    timestamp: datetime
