import logging
from typing import Any, List, Optional

from db import ScreenshotRepository, WorkoutRecordRepository
from models import StorageUsage, WorkoutDetail, WorkoutRecord

logger = logging.getLogger(__name__)


class HistoryService:
    """Read side of the workout history plus deletion and maintenance."""

    def __init__(
        self,
        records: WorkoutRecordRepository,
        screenshots: ScreenshotRepository,
        window: int = 10,
        context_limit: int = 5,
    ) -> None:
        self.records = records
        self.screenshots = screenshots
        self.window = window
        self.context_limit = context_limit

    def recent(self, limit: Optional[int] = None) -> List[WorkoutRecord]:
        """Return the most recent workouts, newest first."""
        return self.records.recent_window(self.window if limit is None else limit)

    def context(self, limit: Optional[int] = None) -> List[WorkoutRecord]:
        """Return the workouts handed to the analyzer as history, oldest first."""
        return self.records.tail(self.context_limit if limit is None else limit)

    async def select(self, workout_id: Any) -> Optional[WorkoutDetail]:
        """Join a workout with its screenshots.

        Screenshots are only fetched here, never for the whole window. A
        missing pair or a screenshot store failure leaves ``images`` empty.
        """
        record = self.records.get(workout_id)
        if record is None:
            return None
        try:
            images = await self.screenshots.get(record.id)
        except Exception as exc:
            logger.warning("Failed to load screenshots for workout %s: %s", record.id, exc)
            images = None
        return WorkoutDetail(record=record, images=images)

    async def delete(self, workout_id: Any) -> bool:
        """Delete a workout and then its screenshots.

        Returns ``False`` when no such workout exists. A record store failure
        propagates; a screenshot delete failure is only logged.
        """
        if not await self.records.delete(workout_id):
            return False
        try:
            await self.screenshots.delete(workout_id)
        except Exception as exc:
            logger.warning("Failed to delete screenshots for workout %s: %s", workout_id, exc)
        return True

    async def prune_orphans(self) -> int:
        """Delete screenshot pairs whose workout no longer exists."""
        known = {r.id for r in self.records.fetch_all_workouts()}
        removed = 0
        for workout_id in await self.screenshots.list_workout_ids():
            if workout_id not in known and await self.screenshots.delete(workout_id):
                removed += 1
        if removed:
            logger.info("Pruned %d orphaned screenshot pairs", removed)
        return removed

    async def usage(self) -> StorageUsage:
        return await self.screenshots.usage()

    async def clear_images(self) -> int:
        return await self.screenshots.clear()
