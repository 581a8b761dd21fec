"""User repository.

Owns the ink ledger mutations. Every balance change is a single conditional
UPDATE evaluated by the database, never a read-modify-write in Python.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from mist.models.user import User


class UserRepository:
    """Repository for User entities and their ink balances.

    Methods:
    - get_by_id: Retrieve user by UUID (always re-reads balances)
    - add: Persist new user
    - reserve_ink: Move ink into pending if enough is spendable
    - settle_ink: Release a reservation and charge the actual cost
    - grant_ink: Credit available and lifetime balances
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, user_id: UUID) -> User | None:
        """Retrieve user by UUID.

        Uses populate_existing so balances changed by UPDATE statements earlier in
        the same session are visible on an already-loaded instance.

        Args:
            user_id: User's unique identifier

        Returns:
            User if found, None otherwise
        """
        result = await self.session.execute(
            select(User)
            .where(User.id == user_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, user: User) -> User:
        """Persist new user to database.

        Args:
            user: User entity to persist

        Returns:
            Persisted user
        """
        self.session.add(user)
        await self.session.flush()
        return user

    async def reserve_ink(self, user_id: UUID, cost: int) -> bool:
        """Reserve ``cost`` ink for an in-flight request.

        Query explanation:
        - SET ink_pending = ink_pending + cost
        - WHERE ink_available - ink_pending >= cost: only when spendable

        Args:
            user_id: User to reserve from
            cost: Ink to move into pending

        Returns:
            True if reserved, False if the user is missing or has too little ink
        """
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)  # type: ignore[arg-type]
            .where(User.ink_available - User.ink_pending >= cost)  # type: ignore[operator]
            .values(ink_pending=User.ink_pending + cost)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def settle_ink(self, user_id: UUID, reserved: int, actual: int) -> None:
        """Release a reservation and charge what was actually produced.

        ``pending`` drops by exactly the reserved amount and ``available`` by the
        actual cost, so a zero-cost settlement is a full refund.

        Args:
            user_id: User whose reservation is settled
            reserved: Amount reserved at submission
            actual: Amount to charge
        """
        await self.session.execute(
            update(User)
            .where(User.id == user_id)  # type: ignore[arg-type]
            .values(
                ink_pending=User.ink_pending - reserved,
                ink_available=User.ink_available - actual,
            )
            .execution_options(synchronize_session=False)
        )

    async def grant_ink(self, user_id: UUID, amount: int) -> bool:
        """Credit ``amount`` ink to available and lifetime balances.

        Args:
            user_id: User to credit
            amount: Positive ink amount

        Returns:
            True if the user exists, False otherwise

        Raises:
            ValueError: If amount is not positive
        """
        if amount <= 0:
            raise ValueError("amount must be positive")

        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)  # type: ignore[arg-type]
            .values(
                ink_available=User.ink_available + amount,
                ink_lifetime=User.ink_lifetime + amount,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]
