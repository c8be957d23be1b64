"""Scheduled sweep that ages out loyalty points and warns about upcoming expiries."""

# meta: job: points-expiry

from __future__ import annotations

import datetime as dt
from typing import Any, Awaitable, Callable, Dict, List
from uuid import UUID

from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from cafe_api.core.clock import Clock, add_months, ensure_aware, utcnow
from cafe_api.core.logging import ledger_context
from cafe_api.core.settings import settings
from cafe_api.models.loyalty import PointsActionEnum, PointsHistory
from cafe_api.models.notification import Notification
from cafe_api.services.errors import AlreadyProcessed
from cafe_api.services.loyalty import PointsAccountant
from cafe_api.services.notifications import NotificationDispatcher, RealtimeChannel
from cafe_api.services.notifications.templates import render_points_expiring

SessionFactory = Callable[[], AsyncSession] | Callable[[], Awaitable[AsyncSession]]


def expiry_warning_key(entry_id: UUID) -> str:
    return f"points-expiring:{entry_id}"


async def run_points_expiry_sweep(
    *,
    session_factory: SessionFactory,
    clock: Clock = utcnow,
    channel: RealtimeChannel | None = None,
) -> Dict[str, Any]:
    """Expire due points, backfill missing expiry dates and raise advance warnings.

    The three steps are independent: a failure in one is recorded in the
    summary's ``errors`` and the remaining steps still run. Re-running the
    sweep is a no-op for entries it has already handled.
    """

    maybe_session = session_factory()
    session: AsyncSession
    if isinstance(maybe_session, AsyncSession):
        session = maybe_session
    else:
        session = await maybe_session

    summary: Dict[str, Any] = {
        "expired_entries": 0,
        "expired_points": 0,
        "already_settled": 0,
        "backfilled": 0,
        "warnings_created": 0,
        "errors": [],
    }

    with ledger_context(job="points_expiry"):
        summary = await _run_steps(session, clock, channel, summary)

    logger.bind(summary=summary).info("Points expiry sweep completed")
    return summary


async def _run_steps(
    session: AsyncSession,
    clock: Clock,
    channel: RealtimeChannel | None,
    summary: Dict[str, Any],
) -> Dict[str, Any]:
    async with session as managed_session:
        notifications = NotificationDispatcher(managed_session, channel=channel, clock=clock)
        accountant = PointsAccountant(managed_session, notifications=notifications, clock=clock)
        now = clock()

        steps = (
            ("expire", lambda: _expire_due_entries(managed_session, accountant, now, summary)),
            ("backfill", lambda: _backfill_expiry_dates(managed_session, summary)),
            ("warn", lambda: _warn_upcoming_expiries(managed_session, notifications, now, summary)),
        )
        for step, run_step in steps:
            try:
                await run_step()
            except Exception as exc:  # noqa: BLE001 - steps are isolated from one another
                await managed_session.rollback()
                notifications.discard_pending()
                summary["errors"].append({"step": step, "error": str(exc)})
                logger.exception("Points expiry step failed", step=step)

    return summary


def _unsettled_earned(*columns):
    """Select ``earned`` entries that have neither expired nor been reversed."""

    settlement = aliased(PointsHistory)
    return (
        select(*columns)
        .outerjoin(settlement, settlement.source_entry_id == PointsHistory.id)
        .where(
            PointsHistory.action == PointsActionEnum.EARNED,
            PointsHistory.expires_at.is_not(None),
            settlement.id.is_(None),
        )
    )


async def _expire_due_entries(
    session: AsyncSession,
    accountant: PointsAccountant,
    now: dt.datetime,
    summary: Dict[str, Any],
) -> None:
    stmt = (
        _unsettled_earned(PointsHistory.id)
        .where(PointsHistory.expires_at <= now)
        .order_by(PointsHistory.expires_at)
    )
    entry_ids: List[UUID] = list((await session.execute(stmt)).scalars().all())

    for entry_id in entry_ids:
        entry = await session.get(PointsHistory, entry_id, populate_existing=True)
        if entry is None:
            continue
        points = int(entry.points)
        try:
            with ledger_context(source_entry_id=entry_id, user_id=entry.user_id):
                await accountant.expire_entry(entry)
                await session.commit()
        except AlreadyProcessed:
            await session.rollback()
            accountant.notifications.discard_pending()
            summary["already_settled"] += 1
            continue
        except Exception as exc:  # noqa: BLE001 - one bad entry must not stop the rest
            await session.rollback()
            accountant.notifications.discard_pending()
            summary["errors"].append({"step": "expire", "entry_id": str(entry_id), "error": str(exc)})
            logger.exception("Failed to expire points entry", entry_id=str(entry_id))
            continue

        await accountant.notifications.deliver_pending()
        summary["expired_entries"] += 1
        summary["expired_points"] += points


async def _backfill_expiry_dates(session: AsyncSession, summary: Dict[str, Any]) -> None:
    stmt = select(PointsHistory).where(
        PointsHistory.action == PointsActionEnum.EARNED,
        PointsHistory.expires_at.is_(None),
    )
    entries = (await session.execute(stmt)).scalars().all()
    for entry in entries:
        entry.expires_at = add_months(ensure_aware(entry.created_at), settings.points_expiry_months)
    await session.commit()
    summary["backfilled"] = len(entries)
    if entries:
        logger.info("Backfilled missing points expiry dates", count=len(entries))


async def _warn_upcoming_expiries(
    session: AsyncSession,
    notifications: NotificationDispatcher,
    now: dt.datetime,
    summary: Dict[str, Any],
) -> None:
    horizon = now + dt.timedelta(days=settings.points_expiry_warning_days)
    stmt = (
        _unsettled_earned(PointsHistory.id, PointsHistory.user_id, PointsHistory.points)
        .where(
            PointsHistory.expires_at > now,
            PointsHistory.expires_at <= horizon,
        )
        .order_by(PointsHistory.expires_at)
    )
    candidates = (await session.execute(stmt)).all()
    if not candidates:
        return

    keys = [expiry_warning_key(entry_id) for entry_id, _, _ in candidates]
    existing_stmt = select(Notification.dedupe_key).where(Notification.dedupe_key.in_(keys))
    already_warned = set((await session.execute(existing_stmt)).scalars().all())

    for entry_id, user_id, points in candidates:
        key = expiry_warning_key(entry_id)
        if key in already_warned:
            continue
        try:
            await notifications.notify_template(user_id, render_points_expiring(int(points)), dedupe_key=key)
            await session.commit()
        except IntegrityError:
            # Another sweep raised the same warning first.
            await session.rollback()
            notifications.discard_pending()
            continue
        await notifications.deliver_pending()
        summary["warnings_created"] += 1


__all__ = ["expiry_warning_key", "run_points_expiry_sweep"]
