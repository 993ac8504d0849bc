"""
InvoiceRepository - Invoice lifecycle and ownership rules.

Status only ever moves forward:
    open -> negotiating -> sold
    open -> sold
Transitions are applied as conditional writes on the (status, version) pair
that was read, so two sessions can never both move the same invoice.
"""

import logging
import math
from datetime import datetime
from decimal import Decimal
from typing import Callable, List, Optional

from pydantic import ValidationError as SchemaError

from marketplace.core.concurrency import retry_on_conflict
from marketplace.core.config import settings
from marketplace.core.exceptions import (
    Forbidden,
    InvalidTransition,
    ValidationError,
)
from marketplace.db.store import DESCENDING, INVOICES, RecordStore
from marketplace.models.base import utcnow
from marketplace.models.invoice import INVOICE_TRANSITIONS, Invoice, InvoiceStatus
from marketplace.schemas.invoice import InvoiceCreate, InvoiceUpdate

logger = logging.getLogger(__name__)

# Optional listing details a seller may clear with an explicit null
CLEARABLE_FIELDS = ("company_size", "evidence_url", "evidence_name")


def default_requested_amount(amount: int) -> int:
    """Conventional asking price: 95% of face value, rounded down."""
    # Decimal keeps the floor exact for every integer amount
    return math.floor(Decimal(amount) * Decimal(str(settings.REQUESTED_AMOUNT_RATIO)))


def validate_invoice_fields(
    amount: int,
    due_date,
    industry: Optional[str],
    requested_amount: int
) -> None:
    """
    Validate listing fields.

    Rules:
    - amount must be positive
    - due_date and industry are required
    - 0 < requested_amount <= amount
    """
    if amount is None or amount <= 0:
        raise ValidationError(f"Invoice amount must be positive: {amount}")
    if due_date is None:
        raise ValidationError("Invoice due date is required")
    if not industry or not industry.strip():
        raise ValidationError("Invoice industry is required")
    if requested_amount <= 0:
        raise ValidationError(f"Requested amount must be positive: {requested_amount}")
    if requested_amount > amount:
        raise ValidationError(
            f"Requested amount ({requested_amount}) exceeds invoice amount ({amount})"
        )


class InvoiceRepository:
    """Invoice persistence and lifecycle transitions."""

    def __init__(self, store: RecordStore, clock: Callable[[], datetime] = utcnow):
        self.store = store
        self.clock = clock

    async def create(self, seller_id: str, attrs: InvoiceCreate) -> Invoice:
        """Create an open invoice owned by ``seller_id``."""
        requested = attrs.requested_amount
        if requested is None and attrs.amount > 0:
            requested = default_requested_amount(attrs.amount)
        validate_invoice_fields(attrs.amount, attrs.due_date, attrs.industry, requested or 0)

        now = self.clock()
        invoice = Invoice(
            seller_id=seller_id,
            amount=attrs.amount,
            due_date=attrs.due_date,
            industry=attrs.industry.strip(),
            company_size=attrs.company_size,
            company_credit=attrs.company_credit,
            requested_amount=requested,
            evidence_url=attrs.evidence_url,
            evidence_name=attrs.evidence_name,
            status=InvoiceStatus.OPEN,
            created_at=now,
            updated_at=now
        )
        doc = await self.store.insert(INVOICES, invoice.to_document())
        logger.info("Invoice %s listed by seller %s (amount=%s)", doc["_id"], seller_id, invoice.amount)
        return Invoice(**doc)

    async def get(self, invoice_id: str) -> Invoice:
        """Get an invoice by id. Raises NotFound."""
        return Invoice(**await self.store.get(INVOICES, invoice_id))

    async def list_open(self) -> List[Invoice]:
        """Market view: open invoices, most recent first."""
        docs = await self.store.find(
            INVOICES,
            {"status": InvoiceStatus.OPEN.value},
            sort=[("created_at", DESCENDING)]
        )
        return [Invoice(**doc) for doc in docs]

    async def list_by_seller(self, seller_id: str) -> List[Invoice]:
        """All invoices owned by a seller, any status."""
        docs = await self.store.find(
            INVOICES,
            {"seller_id": seller_id},
            sort=[("created_at", DESCENDING)]
        )
        return [Invoice(**doc) for doc in docs]

    async def update(self, invoice_id: str, seller_id: str, changes: InvoiceUpdate) -> Invoice:
        """
        Edit an invoice.

        Only the owning seller may edit, and only while the invoice is open.
        The write is conditional on the version read; a concurrent change
        surfaces as ConflictError.
        """
        invoice = await self.get(invoice_id)
        if invoice.seller_id != seller_id:
            raise Forbidden("Only the owning seller may edit this invoice")
        if not invoice.is_open:
            raise InvalidTransition(f"Invoice {invoice_id} is {invoice.status} and can no longer be edited")

        updates = changes.model_dump(exclude_unset=True)
        if not updates:
            return invoice
        cleared = sorted(
            key for key, value in updates.items()
            if value is None and key not in CLEARABLE_FIELDS
        )
        if cleared:
            raise ValidationError(f"Required invoice fields cannot be cleared: {', '.join(cleared)}")

        if "amount" in updates and "requested_amount" not in updates:
            updates["requested_amount"] = default_requested_amount(updates["amount"])
        try:
            merged = Invoice.model_validate({**invoice.to_document(), **updates})
        except SchemaError as e:
            raise ValidationError(f"Invalid invoice update: {e}") from e
        validate_invoice_fields(merged.amount, merged.due_date, merged.industry, merged.requested_amount)

        fields = {
            key: value
            for key, value in merged.to_document().items()
            if key in updates or key == "requested_amount"
        }
        fields["version"] = invoice.version + 1
        fields["updated_at"] = self.clock()

        await self.store.update(
            INVOICES,
            invoice_id,
            fields,
            expected={"status": InvoiceStatus.OPEN.value, "version": invoice.version}
        )
        return await self.get(invoice_id)

    async def transition_status(
        self,
        invoice_id: str,
        new_status: InvoiceStatus,
        accepted_deal_id: Optional[str] = None
    ) -> Invoice:
        """
        Move an invoice forward along its lifecycle.

        Internal entry point for the deal engine. The status read is the
        precondition of the write; on ConflictError the whole read-check-write
        is retried, and InvalidTransition is raised if the move is no longer
        allowed from what was read.
        """
        new_status = InvoiceStatus(new_status)

        async def attempt() -> Invoice:
            invoice = await self.get(invoice_id)
            current = InvoiceStatus(invoice.status)
            if new_status not in INVOICE_TRANSITIONS[current]:
                raise InvalidTransition(
                    f"Invoice {invoice_id} cannot move from {current.value} to {new_status.value}"
                )

            fields = {
                "status": new_status.value,
                "version": invoice.version + 1,
                "updated_at": self.clock()
            }
            if accepted_deal_id is not None:
                fields["accepted_deal_id"] = accepted_deal_id

            await self.store.update(
                INVOICES,
                invoice_id,
                fields,
                expected={"status": current.value, "version": invoice.version}
            )
            logger.info("Invoice %s: %s -> %s", invoice_id, current.value, new_status.value)
            return invoice.model_copy(update=fields)

        return await retry_on_conflict(attempt, f"invoice {invoice_id} -> {new_status.value}")

    async def reassign_claim(self, invoice_id: str, from_deal_id: str, to_deal_id: str) -> Invoice:
        """
        Hand a negotiating invoice's claim from one deal to another.

        Used when the claiming deal was withdrawn before it could be promoted.
        The write is conditional on the claim still pointing at ``from_deal_id``.
        """

        async def attempt() -> Invoice:
            invoice = await self.get(invoice_id)
            if invoice.status != InvoiceStatus.NEGOTIATING or invoice.accepted_deal_id != from_deal_id:
                raise InvalidTransition(f"Invoice {invoice_id} is no longer claimed by deal {from_deal_id}")

            fields = {
                "accepted_deal_id": to_deal_id,
                "version": invoice.version + 1,
                "updated_at": self.clock()
            }
            await self.store.update(
                INVOICES,
                invoice_id,
                fields,
                expected={
                    "status": InvoiceStatus.NEGOTIATING.value,
                    "accepted_deal_id": from_deal_id,
                    "version": invoice.version
                }
            )
            logger.warning("Invoice %s: claim moved from deal %s to %s", invoice_id, from_deal_id, to_deal_id)
            return invoice.model_copy(update=fields)

        return await retry_on_conflict(attempt, f"invoice {invoice_id} claim -> {to_deal_id}")
