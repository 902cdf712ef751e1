"""
Scheduled maintenance: reservation reminders and queue cleanup.
"""

import logging
from datetime import timedelta
from typing import Dict, List

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.clock import Clock, utcnow
from app.jobs.dispatcher import JobDispatcher
from app.jobs.payloads import JobCategory
from app.models import Reservation, ReservationStatus

logger = logging.getLogger(__name__)


class MaintenanceService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: JobDispatcher,
        restaurant_name: str,
        reminder_window_hours: int = 2,
        clock: Clock = utcnow,
    ):
        self._session_factory = session_factory
        self.dispatcher = dispatcher
        self.restaurant_name = restaurant_name
        self.reminder_window_hours = reminder_window_hours
        self._clock = clock

    async def _claim_reminder(self, reservation_id: str, flag: bool) -> bool:
        now = self._clock()
        async with self._session_factory() as session:
            async with session.begin():
                result = await session.execute(
                    update(Reservation)
                    .where(Reservation.id == reservation_id, Reservation.reminder_sent == (not flag))
                    .values(reminder_sent=flag, reminder_sent_at=now if flag else None)
                    .execution_options(synchronize_session=False)
                )
        return result.rowcount == 1

    async def send_reservation_reminders(self) -> int:
        """
        Queue reminders for confirmed reservations starting within the window.

        Each reservation is flagged, then its SMS and email jobs are queued
        in one commit. If queueing fails the flag is rolled back, so the next
        run retries that reservation, and the scan moves on.
        """
        now = self._clock()
        window_end = now + timedelta(hours=self.reminder_window_hours)

        async with self._session_factory() as session:
            result = await session.execute(
                select(Reservation).where(
                    Reservation.status == ReservationStatus.CONFIRMED,
                    Reservation.reminder_sent.is_(False),
                    Reservation.starts_at >= now,
                    Reservation.starts_at <= window_end,
                ).order_by(Reservation.starts_at)
            )
            upcoming = result.scalars().all()

        sent = 0
        for reservation in upcoming:
            if not await self._claim_reminder(reservation.id, True):
                continue

            jobs = self._reminder_jobs(reservation)
            try:
                await self.dispatcher.enqueue_many(jobs)
            except Exception as e:
                await self._claim_reminder(reservation.id, False)
                logger.error(f"Could not queue reminder for reservation {reservation.reservation_number}: {e}")
                continue
            sent += 1

        logger.info(f"Sent {sent} reservation reminders")
        return sent

    def _reminder_jobs(self, reservation: Reservation) -> List[dict]:
        time_str = reservation.starts_at.strftime("%H:%M")
        date_str = reservation.starts_at.strftime("%Y-%m-%d")
        jobs = []
        if reservation.guest_phone:
            jobs.append(dict(category=JobCategory.SMS, payload={
                "type": "reservation-reminder",
                "to": reservation.guest_phone,
                "message": (
                    f"Reminder: Your reservation at {self.restaurant_name} is today at "
                    f"{time_str} for {reservation.party_size} guests. See you soon!"
                ),
            }))
        if reservation.guest_email:
            jobs.append(dict(category=JobCategory.EMAIL, payload={
                "type": "reservation-reminder",
                "to": reservation.guest_email,
                "subject": f"Reservation reminder - {self.restaurant_name}",
                "data": {
                    "reservation_number": reservation.reservation_number,
                    "guest_name": reservation.guest_name,
                    "date": date_str,
                    "time": time_str,
                    "party_size": reservation.party_size,
                },
            }))
        return jobs

    async def cleanup(self) -> Dict[str, int]:
        return await self.dispatcher.purge_finished()
