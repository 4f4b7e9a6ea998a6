"""
Bill Computation and Invoice Contract

Pure functions over a session: no store access, no clock. Amounts are
Decimal throughout and only rounded to 2 places by ``format_money`` (at
display time).

Surcharges are each computed on the subtotal (never on each other):
    CGST 2.5% + SGST 2.5% + service charge 5% (rates from settings)

The stored ``sessionTotal`` is the authoritative subtotal. The line items
are re-added as a check; a mismatch means a reconciliation bug upstream,
so it is logged and reported as ``reconciled=False`` rather than hidden.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from tableside.core.config import Settings, get_settings
from tableside.schemas import (
    BillResponse,
    BillStatus,
    InvoiceLineResponse,
    LineItem,
    Session,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _decimal(value: float) -> Decimal:
    return Decimal(str(value))


def format_money(amount: Decimal) -> Decimal:
    """Round half-up to 2 decimal places for display."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def concatenated_items(session: Session) -> list[LineItem]:
    """Original items first, then every batch in append order."""
    return session.all_items


@dataclass(frozen=True)
class BillTotals:
    """
    Attributes:
        subtotal: Stored session total (authoritative)
        items_subtotal: Sum over the concatenated line items
        cgst, sgst, service_charge: Surcharges on ``subtotal``
        grand_total: subtotal + the three surcharges
        reconciled: Whether both subtotals agree
    """
    subtotal: Decimal
    items_subtotal: Decimal
    cgst: Decimal
    sgst: Decimal
    service_charge: Decimal
    grand_total: Decimal
    reconciled: bool


def compute_bill(session: Session, settings: Optional[Settings] = None) -> BillTotals:
    settings = settings or get_settings()

    items_subtotal = sum(
        (_decimal(item.price) * item.quantity for item in concatenated_items(session)),
        Decimal("0"),
    )
    subtotal = _decimal(session.session_total)
    reconciled = items_subtotal == subtotal
    if not reconciled:
        logger.warning(
            f"Session {session.id}: stored total {subtotal} does not match "
            f"line items {items_subtotal}"
        )

    cgst = subtotal * _decimal(settings.cgst_rate)
    sgst = subtotal * _decimal(settings.sgst_rate)
    service_charge = subtotal * _decimal(settings.service_charge_rate)

    return BillTotals(
        subtotal=subtotal,
        items_subtotal=items_subtotal,
        cgst=cgst,
        sgst=sgst,
        service_charge=service_charge,
        grand_total=subtotal + cgst + sgst + service_charge,
        reconciled=reconciled,
    )


# =============================================================================
# INVOICE
# =============================================================================

@dataclass(frozen=True)
class RestaurantDetails:
    name: str
    tagline: str
    address: str
    phone: str
    gstin: str
    fssai: str

    @classmethod
    def from_settings(cls, settings: Settings) -> "RestaurantDetails":
        return cls(
            name=settings.restaurant_name,
            tagline=settings.restaurant_tagline,
            address=settings.restaurant_address,
            phone=settings.restaurant_phone,
            gstin=settings.restaurant_gstin,
            fssai=settings.restaurant_fssai,
        )


@dataclass(frozen=True)
class InvoiceLine:
    name: str
    portion: str
    quantity: int
    price: Decimal
    extra: bool = False

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class Invoice:
    """Everything the invoice renderer consumes."""
    session_id: str
    invoice_number: str
    invoice_prefix: str
    invoice_date: Optional[datetime]
    table_number: int
    customer_name: str
    number_of_people: int
    bill_status: Optional[BillStatus]
    lines: list[InvoiceLine]
    totals: BillTotals
    restaurant: RestaurantDetails
    currency_label: str = "Rs."
    notes: list[str] = field(default_factory=list)

    @property
    def display_number(self) -> str:
        return f"{self.invoice_prefix}-{self.invoice_number}"

    def to_response(self) -> BillResponse:
        return BillResponse(
            session_id=self.session_id,
            invoice_number=self.display_number,
            invoice_date=self.invoice_date,
            table_number=self.table_number,
            customer_name=self.customer_name,
            bill_status=self.bill_status,
            items=[
                InvoiceLineResponse(
                    name=line.name,
                    portion=line.portion,
                    quantity=line.quantity,
                    price=float(format_money(line.price)),
                    line_total=float(format_money(line.line_total)),
                    extra=line.extra,
                )
                for line in self.lines
            ],
            subtotal=float(format_money(self.totals.subtotal)),
            cgst=float(format_money(self.totals.cgst)),
            sgst=float(format_money(self.totals.sgst)),
            service_charge=float(format_money(self.totals.service_charge)),
            grand_total=float(format_money(self.totals.grand_total)),
            reconciled=self.totals.reconciled,
        )


def invoice_number(session_id: str) -> str:
    """First 6 characters of the session id, upper-cased."""
    return session_id[:6].upper()


def _invoice_lines(session: Session) -> list[InvoiceLine]:
    lines = [
        InvoiceLine(item.name, item.portion.value, item.quantity, _decimal(item.price))
        for item in session.session_items
    ]
    for batch in session.extras_batches:
        lines.extend(
            InvoiceLine(item.name, item.portion.value, item.quantity, _decimal(item.price), extra=True)
            for item in batch.items
        )
    return lines


def build_invoice(session: Session, settings: Optional[Settings] = None) -> Invoice:
    """
    Assemble the invoice for a session.

    The invoice date is the session's last update, so regenerating the
    invoice for an unchanged session yields the same document.
    """
    settings = settings or get_settings()
    return Invoice(
        session_id=session.id,
        invoice_number=invoice_number(session.id),
        invoice_prefix=settings.invoice_prefix,
        invoice_date=session.updated_at,
        table_number=session.table_number,
        customer_name=session.customer_name,
        number_of_people=session.number_of_people,
        bill_status=session.bill_status,
        lines=_invoice_lines(session),
        totals=compute_bill(session, settings),
        restaurant=RestaurantDetails.from_settings(settings),
        currency_label=settings.currency_label,
        notes=[
            "Thank you for dining with us!",
            "Please visit again",
        ],
    )
