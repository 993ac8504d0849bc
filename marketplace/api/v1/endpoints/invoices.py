from typing import List, Optional
from fastapi import APIRouter, Depends, status
from marketplace.api.deps import get_marketplace
from marketplace.core.auth import Principal, get_current_principal
from marketplace.schemas.deal import DealResponse
from marketplace.schemas.invoice import InvoiceCreate, InvoiceResponse, InvoiceUpdate
from marketplace.services.marketplace_service import MarketplaceService

router = APIRouter()

@router.post("/", response_model=InvoiceResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice(
    invoice_in: InvoiceCreate,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """List a new invoice for sale"""
    return await service.create_invoice(principal, invoice_in)

@router.get("/", response_model=List[InvoiceResponse])
async def list_open_invoices(
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Open invoices, most recent first"""
    return await service.list_open_invoices(principal)

@router.get("/mine", response_model=List[InvoiceResponse])
async def list_my_invoices(
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Invoices listed by the current seller"""
    return await service.list_my_invoices(principal)

@router.get("/{invoice_id}", response_model=InvoiceResponse)
async def get_invoice(
    invoice_id: str,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Get an invoice by ID"""
    return await service.get_invoice(principal, invoice_id)

@router.patch("/{invoice_id}", response_model=InvoiceResponse)
async def update_invoice(
    invoice_id: str,
    invoice_in: InvoiceUpdate,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Edit an open invoice"""
    return await service.update_invoice(principal, invoice_id, invoice_in)

@router.get("/{invoice_id}/deals", response_model=List[DealResponse])
async def list_invoice_deals(
    invoice_id: str,
    principal: Optional[Principal] = Depends(get_current_principal),
    service: MarketplaceService = Depends(get_marketplace)
):
    """Offers on an invoice, best first"""
    deals = await service.list_invoice_deals(principal, invoice_id)
    return [
        DealResponse(**deal.to_document(), is_top_offer=(index == 0))
        for index, deal in enumerate(deals)
    ]
