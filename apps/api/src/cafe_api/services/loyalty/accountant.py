"""Loyalty points accounting against the ledger store.

Balances only ever move through relative ``UPDATE ... SET points = points + n``
statements so that concurrent awards, redemptions and refunds on the same user
converge regardless of interleaving. Ledger writes that must happen at most
once (one ``earned`` entry per order, one settlement per ``earned`` entry,
where a settlement is its expiry or its reversal) are guarded by partial
unique indexes; a conflicting write surfaces as
:class:`AlreadyProcessed` and leaves the caller to roll back its unit.

Methods prefixed ``award``/``refund``/``reverse``/``expire``/``apply`` run inside
the caller's unit of work and never commit. ``redeem`` is a complete unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loguru import logger
from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cafe_api.core.clock import Clock, add_months, utcnow
from cafe_api.core.settings import settings
from cafe_api.models.loyalty import LoyaltyPoints, PointsActionEnum, PointsHistory
from cafe_api.models.user import User
from cafe_api.observability.ledger import get_ledger_store
from cafe_api.services.errors import AlreadyProcessed, InsufficientBalance, TransitionFailed, UserNotFound
from cafe_api.services.notifications import NotificationDispatcher
from cafe_api.services.notifications.templates import render_loyalty_points


@dataclass
class PointsSnapshot:
    """Balance plus newest-first ledger entries for a user."""

    user_id: UUID
    points: int
    history: list[PointsHistory]


class PointsAccountant:
    """Computes and applies loyalty-point deltas."""

    def __init__(
        self,
        db_session: AsyncSession,
        *,
        notifications: NotificationDispatcher | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._db = db_session
        self._clock = clock
        self._notifications = notifications or NotificationDispatcher(db_session, clock=clock)
        self._observability = get_ledger_store()

    @property
    def notifications(self) -> NotificationDispatcher:
        return self._notifications

    async def ensure_account(self, user_id: UUID) -> LoyaltyPoints:
        """Fetch or lazily create (at zero) the balance row for a user.

        Commits on creation, so call it before opening a unit of work.
        """

        account = await self._get_account(user_id)
        if account is not None:
            return account

        user = await self._db.get(User, user_id)
        if user is None:
            raise UserNotFound(f"User {user_id} not found")

        account = LoyaltyPoints(user_id=user_id, points=0)
        self._db.add(account)
        try:
            await self._db.commit()
        except IntegrityError:
            await self._db.rollback()
            logger.warning("Detected race when creating loyalty account", user_id=str(user_id))
            account = await self._get_account(user_id)
            if account is None:  # pragma: no cover - row vanished between attempts
                raise TransitionFailed(f"Could not create loyalty account for {user_id}")
            return account

        logger.info("Created loyalty account", user_id=str(user_id))
        return account

    async def get_balance(self, user_id: UUID) -> int:
        stmt = select(LoyaltyPoints.points).where(LoyaltyPoints.user_id == user_id)
        result = await self._db.execute(stmt)
        return int(result.scalar_one_or_none() or 0)

    async def snapshot(self, user_id: UUID, *, limit: int = 100) -> PointsSnapshot:
        account = await self.ensure_account(user_id)
        await self._db.refresh(account)
        bounded_limit = max(1, min(limit, 500))
        stmt = (
            select(PointsHistory)
            .where(PointsHistory.user_id == user_id)
            .order_by(PointsHistory.created_at.desc(), PointsHistory.id.desc())
            .limit(bounded_limit)
        )
        result = await self._db.execute(stmt)
        return PointsSnapshot(user_id=user_id, points=int(account.points or 0), history=list(result.scalars().all()))

    async def redeem(self, user_id: UUID, amount: int) -> int:
        """Spend ``amount`` points as one atomic unit; returns the new balance."""

        if amount <= 0:
            raise ValueError("Redemption amount must be positive")
        await self.ensure_account(user_id)
        try:
            await self.apply_redemption(user_id, amount)
            await self._db.commit()
        except InsufficientBalance:
            await self._db.rollback()
            self._notifications.discard_pending()
            raise
        except Exception as exc:
            await self._db.rollback()
            self._notifications.discard_pending()
            logger.exception("Points redemption failed", user_id=str(user_id), amount=amount)
            raise TransitionFailed(f"Could not redeem points for {user_id}") from exc

        await self._notifications.deliver_pending()
        return await self.get_balance(user_id)

    async def apply_redemption(self, user_id: UUID, amount: int, *, order_id: UUID | None = None) -> PointsHistory:
        """Conditionally decrement the balance and append a ``redeemed`` entry."""

        if amount <= 0:
            raise ValueError("Redemption amount must be positive")

        stmt = (
            update(LoyaltyPoints)
            .where(LoyaltyPoints.user_id == user_id, LoyaltyPoints.points >= amount)
            .values(points=LoyaltyPoints.points - amount)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            raise InsufficientBalance(amount, await self.get_balance(user_id))

        entry = await self._append(user_id, PointsActionEnum.REDEEMED, amount, order_id=order_id)
        await self._notifications.notify_template(user_id, render_loyalty_points(amount, "redeemed", order_id))
        self._observability.record_points(PointsActionEnum.REDEEMED.value, amount)
        logger.info("Redeemed loyalty points", user_id=str(user_id), points=amount, order_id=_str(order_id))
        return entry

    async def award(self, user_id: UUID, amount: int, order_id: UUID) -> PointsHistory:
        """Credit ``amount`` for a completed order; raises AlreadyProcessed on a repeat."""

        now = self._clock()
        try:
            entry = await self._append(
                user_id,
                PointsActionEnum.EARNED,
                amount,
                order_id=order_id,
                expires_at=add_months(now, settings.points_expiry_months),
            )
        except IntegrityError as exc:
            self._observability.record_guard_hit("earned_per_order")
            logger.info("Points already awarded for order", user_id=str(user_id), order_id=str(order_id))
            raise AlreadyProcessed(f"Points already awarded for order {order_id}") from exc

        await self._credit(user_id, amount)
        await self._notifications.notify_template(user_id, render_loyalty_points(amount, "earned", order_id))
        self._observability.record_points(PointsActionEnum.EARNED.value, amount)
        logger.info("Awarded loyalty points", user_id=str(user_id), points=amount, order_id=str(order_id))
        return entry

    async def refund_redemption(self, user_id: UUID, amount: int, order_id: UUID) -> PointsHistory:
        """Give back points spent at checkout on a cancelled order."""

        await self._credit(user_id, amount)
        entry = await self._append(user_id, PointsActionEnum.REFUNDED, amount, order_id=order_id)
        self._observability.record_points(PointsActionEnum.REFUNDED.value, amount)
        logger.info("Refunded redeemed points", user_id=str(user_id), points=amount, order_id=str(order_id))
        return entry

    async def reverse_award(self, user_id: UUID, order_id: UUID) -> PointsHistory | None:
        """Take back points earned on ``order_id`` (clamped at zero), if any are still held.

        Points that already expired or were already reversed are not debited again.
        """

        earned = await self.find_earned_entry(order_id)
        if earned is None:
            return None

        settlement = await self.find_settlement(earned.id)
        if settlement is not None:
            self._observability.record_guard_hit("settled_per_entry")
            logger.info(
                "Earned points already settled; nothing to reverse",
                user_id=str(user_id),
                order_id=str(order_id),
                settled_as=settlement.action.value,
            )
            return None

        await self._debit_clamped(user_id, int(earned.points))
        entry = await self._append(
            user_id,
            PointsActionEnum.REFUNDED,
            int(earned.points),
            order_id=order_id,
            source_entry_id=earned.id,
        )
        self._observability.record_points("reversed", int(earned.points))
        logger.warning(
            "Reversed points earned on cancelled order",
            user_id=str(user_id),
            points=int(earned.points),
            order_id=str(order_id),
        )
        return entry

    async def expire_entry(self, earned: PointsHistory) -> PointsHistory:
        """Age out an ``earned`` entry; raises AlreadyProcessed if it was already expired or reversed."""

        try:
            entry = await self._append(
                earned.user_id,
                PointsActionEnum.EXPIRED,
                int(earned.points),
                order_id=earned.order_id,
                source_entry_id=earned.id,
            )
        except IntegrityError as exc:
            self._observability.record_guard_hit("settled_per_entry")
            raise AlreadyProcessed(f"Points entry {earned.id} already settled") from exc

        await self._debit_clamped(earned.user_id, int(earned.points))
        await self._notifications.notify_template(
            earned.user_id, render_loyalty_points(int(earned.points), "expired", earned.order_id)
        )
        self._observability.record_points(PointsActionEnum.EXPIRED.value, int(earned.points))
        logger.info(
            "Expired loyalty points",
            user_id=str(earned.user_id),
            points=int(earned.points),
            source_entry_id=str(earned.id),
        )
        return entry

    async def find_earned_entry(self, order_id: UUID) -> PointsHistory | None:
        stmt = select(PointsHistory).where(
            PointsHistory.order_id == order_id,
            PointsHistory.action == PointsActionEnum.EARNED,
        )
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_settlement(self, earned_id: UUID) -> PointsHistory | None:
        """The ``expired`` or ``refunded`` entry that closed out ``earned_id``, if any."""

        stmt = select(PointsHistory).where(PointsHistory.source_entry_id == earned_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _get_account(self, user_id: UUID) -> LoyaltyPoints | None:
        stmt = select(LoyaltyPoints).where(LoyaltyPoints.user_id == user_id)
        result = await self._db.execute(stmt)
        return result.scalar_one_or_none()

    async def _credit(self, user_id: UUID, amount: int) -> None:
        stmt = (
            update(LoyaltyPoints)
            .where(LoyaltyPoints.user_id == user_id)
            .values(points=LoyaltyPoints.points + amount)
            .execution_options(synchronize_session=False)
        )
        result = await self._db.execute(stmt)
        if result.rowcount != 1:
            raise UserNotFound(f"No loyalty account for user {user_id}")

    async def _debit_clamped(self, user_id: UUID, amount: int) -> None:
        stmt = (
            update(LoyaltyPoints)
            .where(LoyaltyPoints.user_id == user_id)
            .values(
                points=case(
                    (LoyaltyPoints.points >= amount, LoyaltyPoints.points - amount),
                    else_=0,
                )
            )
            .execution_options(synchronize_session=False)
        )
        await self._db.execute(stmt)

    async def _append(
        self,
        user_id: UUID,
        action: PointsActionEnum,
        points: int,
        *,
        order_id: UUID | None = None,
        source_entry_id: UUID | None = None,
        expires_at: datetime | None = None,
    ) -> PointsHistory:
        entry = PointsHistory(
            user_id=user_id,
            action=action,
            points=points,
            order_id=order_id,
            source_entry_id=source_entry_id,
            expires_at=expires_at,
            created_at=self._clock(),
        )
        self._db.add(entry)
        await self._db.flush()
        return entry


def _str(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


__all__ = ["PointsAccountant", "PointsSnapshot"]
