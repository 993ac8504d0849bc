from typing import Optional

from marketplace.core.auth import Principal
from marketplace.core.exceptions import Forbidden, NotFound, Unauthenticated
from marketplace.models.deal import Deal
from marketplace.models.user import User, UserRole
from marketplace.repositories.user_repo import UserRepository


class AccessPolicy:
    """
    Role and ownership gate in front of every marketplace operation.

    The acting user's id and role are always re-read from the user record of
    the authenticated principal. Nothing in a request payload can change who
    the caller is.
    """

    def __init__(self, users: UserRepository):
        self.users = users

    async def authenticate(self, principal: Optional[Principal]) -> User:
        if principal is None:
            raise Unauthenticated("Authentication required")
        try:
            return await self.users.get_user_by_id(principal.id)
        except NotFound as e:
            raise Unauthenticated("No marketplace profile for this account") from e

    async def require(self, principal: Optional[Principal], *roles: UserRole) -> User:
        """Authenticated, active, and (if given) holding one of ``roles``."""
        user = await self.authenticate(principal)
        if not user.is_active:
            raise Forbidden("Account is suspended")
        if roles and user.role not in roles:
            allowed = ", ".join(UserRole(role).value for role in roles)
            raise Forbidden(f"Requires role: {allowed}")
        return user

    @staticmethod
    def require_party(user: User, deal: Deal) -> None:
        if not deal.is_party(user.id):
            raise Forbidden("Only the buyer or the seller of this deal can do this")

    @staticmethod
    def require_party_or_admin(user: User, deal: Deal) -> None:
        if user.role != UserRole.ADMIN and not deal.is_party(user.id):
            raise Forbidden("Not a participant of this deal")
