"""
MarketplaceService - the policy-gated entry point for the presentation layer.

Every method takes the authenticated principal first, runs the access policy
before touching any state, and derives ids (seller, sender, receiver) from the
acting user rather than from the request.
"""

from datetime import datetime
from typing import Callable, List, Optional

from marketplace.core.auth import Principal
from marketplace.core.exceptions import Forbidden, Unauthenticated
from marketplace.db.store import DEALS, DESCENDING, RecordStore
from marketplace.models.base import utcnow
from marketplace.models.deal import Deal
from marketplace.models.invoice import Invoice
from marketplace.models.market import MarketStatistics
from marketplace.models.message import Message
from marketplace.models.user import User, UserRole, UserStatus
from marketplace.repositories.invoice_repo import InvoiceRepository
from marketplace.repositories.user_repo import UserRepository
from marketplace.schemas.invoice import InvoiceCreate, InvoiceUpdate
from marketplace.schemas.user import UserCreate, UserUpdate
from marketplace.services.access_policy import AccessPolicy
from marketplace.services.deal_engine import DealEngine
from marketplace.services.market import MarketAggregator
from marketplace.services.messaging import MessagingLog


class MarketplaceService:

    def __init__(
        self,
        store: RecordStore,
        market: MarketAggregator,
        clock: Callable[[], datetime] = utcnow
    ):
        self.store = store
        self.market = market
        self.users = UserRepository(store)
        self.invoices = InvoiceRepository(store, clock)
        self.messages = MessagingLog(store, clock)
        self.deals = DealEngine(store, self.invoices, self.messages, market, clock)
        self.policy = AccessPolicy(self.users)

    # Users

    async def register(self, principal: Optional[Principal], data: UserCreate) -> User:
        """Create the marketplace profile for a freshly signed-up account."""
        if principal is None:
            raise Unauthenticated("Authentication required")
        if data.role == UserRole.ADMIN:
            raise Forbidden("Admin accounts cannot be self-registered")
        return await self.users.create_user(principal.id, data)

    async def get_me(self, principal: Optional[Principal]) -> User:
        return await self.policy.authenticate(principal)

    async def update_profile(self, principal: Optional[Principal], data: UserUpdate) -> User:
        user = await self.policy.require(principal)
        return await self.users.update_profile(user.id, data)

    async def list_users(self, principal: Optional[Principal], role: Optional[UserRole] = None) -> List[User]:
        await self.policy.authenticate(principal)
        users = await self.users.list_users()
        if role is not None:
            users = [user for user in users if user.role == role]
        return users

    async def set_user_status(self, principal: Optional[Principal], user_id: str, status: UserStatus) -> User:
        admin = await self.policy.require(principal, UserRole.ADMIN)
        if admin.id == user_id:
            raise Forbidden("Admins cannot change their own status")
        user = await self.users.set_status(user_id, status)
        self.market.set_active_users(await self.users.count_active())
        return user

    # Invoices

    async def create_invoice(self, principal: Optional[Principal], attrs: InvoiceCreate) -> Invoice:
        seller = await self.policy.require(principal, UserRole.SELLER, UserRole.ADMIN)
        return await self.invoices.create(seller.id, attrs)

    async def update_invoice(self, principal: Optional[Principal], invoice_id: str, changes: InvoiceUpdate) -> Invoice:
        seller = await self.policy.require(principal, UserRole.SELLER, UserRole.ADMIN)
        return await self.invoices.update(invoice_id, seller.id, changes)

    async def list_open_invoices(self, principal: Optional[Principal]) -> List[Invoice]:
        await self.policy.authenticate(principal)
        return await self.invoices.list_open()

    async def list_my_invoices(self, principal: Optional[Principal]) -> List[Invoice]:
        user = await self.policy.authenticate(principal)
        return await self.invoices.list_by_seller(user.id)

    async def get_invoice(self, principal: Optional[Principal], invoice_id: str) -> Invoice:
        """Open invoices are public to members; closed ones only to their seller, bidders and admins."""
        user = await self.policy.authenticate(principal)
        invoice = await self.invoices.get(invoice_id)
        if invoice.is_open or user.role == UserRole.ADMIN or invoice.seller_id == user.id:
            return invoice
        own_deals = await self.store.find(DEALS, {"invoice_id": invoice_id, "buyer_id": user.id})
        if not own_deals:
            raise Forbidden("This invoice is no longer on the market")
        return invoice

    async def list_invoice_deals(self, principal: Optional[Principal], invoice_id: str) -> List[Deal]:
        """Ranked offers for the seller's review."""
        user = await self.policy.authenticate(principal)
        invoice = await self.invoices.get(invoice_id)
        if user.role != UserRole.ADMIN and invoice.seller_id != user.id:
            raise Forbidden("Only the invoice seller can review its offers")
        return await self.deals.list_for_invoice(invoice_id)

    # Deals

    async def submit_offer(
        self,
        principal: Optional[Principal],
        invoice_id: str,
        amount: int,
        message: str
    ) -> Deal:
        buyer = await self.policy.require(principal, UserRole.BUYER, UserRole.ADMIN)
        return await self.deals.submit_offer(invoice_id, buyer.id, amount, message)

    async def accept_offer(self, principal: Optional[Principal], deal_id: str) -> Deal:
        seller = await self.policy.require(principal)
        return await self.deals.accept_offer(deal_id, seller.id)

    async def complete_deal(self, principal: Optional[Principal], deal_id: str) -> Deal:
        user = await self.policy.require(principal)
        return await self.deals.complete_deal(deal_id, user.id)

    async def revise_amount(self, principal: Optional[Principal], deal_id: str, amount: int) -> Deal:
        user = await self.policy.require(principal)
        return await self.deals.revise_amount(deal_id, user.id, amount)

    async def get_deal(self, principal: Optional[Principal], deal_id: str) -> Deal:
        user = await self.policy.authenticate(principal)
        deal = await self.deals.get(deal_id)
        self.policy.require_party_or_admin(user, deal)
        return deal

    async def list_my_deals(self, principal: Optional[Principal]) -> List[Deal]:
        user = await self.policy.authenticate(principal)
        if user.role == UserRole.BUYER:
            return await self.deals.list_for_buyer(user.id)
        if user.role == UserRole.SELLER:
            return await self.deals.list_for_seller(user.id)
        docs = await self.store.find(DEALS, sort=[("last_activity_at", DESCENDING)])
        return [Deal(**doc) for doc in docs]

    # Messages

    async def send_message(self, principal: Optional[Principal], deal_id: str, content: str) -> Message:
        user = await self.policy.require(principal)
        deal = await self.deals.get(deal_id)
        self.policy.require_party(user, deal)
        return await self.messages.append(deal.id, user.id, deal.counterpart_of(user.id), content)

    async def list_messages(self, principal: Optional[Principal], deal_id: str) -> List[Message]:
        await self.get_deal(principal, deal_id)
        return await self.messages.list_for_deal(deal_id)

    # Market

    def market_snapshot(self) -> MarketStatistics:
        return self.market.snapshot()
