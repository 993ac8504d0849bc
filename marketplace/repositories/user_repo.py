from typing import List

from pydantic import ValidationError as SchemaError

from marketplace.core.exceptions import ValidationError
from marketplace.db.store import ASCENDING, USERS, RecordStore
from marketplace.models.user import User, UserRole, UserStatus
from marketplace.schemas.user import UserCreate, UserUpdate

BUYER_ONLY_FIELDS = ("budget", "appeal_point")
REQUIRED_PROFILE_FIELDS = ("name", "company_name", "privacy_settings")


class UserRepository:
    """User database operations."""

    def __init__(self, store: RecordStore):
        self.store = store

    async def create_user(self, user_id: str, user_data: UserCreate) -> User:
        """Create the profile for an authenticated identity. Role is fixed from here on."""
        profile = user_data.model_dump(exclude_none=True)
        if user_data.role != UserRole.BUYER:
            for field in BUYER_ONLY_FIELDS:
                if field in profile:
                    raise ValidationError(f"'{field}' is only available to buyers")

        user = User(id=user_id, status=UserStatus.ACTIVE, **profile)
        # Duplicate registration surfaces as ConflictError from the store
        doc = await self.store.insert(USERS, user.to_document())
        return User(**doc)

    async def get_user_by_id(self, user_id: str) -> User:
        """Get user by ID. Raises NotFound."""
        return User(**await self.store.get(USERS, user_id))

    async def list_users(self) -> List[User]:
        docs = await self.store.find(USERS, sort=[("registered_at", ASCENDING)])
        return [User(**doc) for doc in docs]

    async def count_active(self) -> int:
        docs = await self.store.find(USERS, {"status": UserStatus.ACTIVE.value})
        return len(docs)

    async def update_profile(self, user_id: str, update_data: UserUpdate) -> User:
        """Update profile fields. Role and status never change here."""
        user = await self.get_user_by_id(user_id)
        updates = update_data.model_dump(exclude_unset=True)
        if user.role != UserRole.BUYER:
            for field in BUYER_ONLY_FIELDS:
                if updates.get(field) is not None:
                    raise ValidationError(f"'{field}' is only available to buyers")
        if not updates:
            return user
        cleared = sorted(field for field in REQUIRED_PROFILE_FIELDS if field in updates and updates[field] is None)
        if cleared:
            raise ValidationError(f"Profile fields cannot be cleared: {', '.join(cleared)}")
        try:
            User.model_validate({**user.to_document(), **updates})
        except SchemaError as e:
            raise ValidationError(f"Invalid profile update: {e}") from e

        await self.store.update(USERS, user_id, updates)
        return await self.get_user_by_id(user_id)

    async def set_status(self, user_id: str, status: UserStatus) -> User:
        user = await self.get_user_by_id(user_id)
        await self.store.update(USERS, user_id, {"status": UserStatus(status).value})
        return user.model_copy(update={"status": UserStatus(status).value})
