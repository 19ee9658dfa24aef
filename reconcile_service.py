import asyncio
import logging
from typing import Any, Mapping, Optional

from db import ScreenshotRepository, WorkoutRecordRepository
from models import ImagePayload, SaveResult, WorkoutRecord

logger = logging.getLogger(__name__)


class ReconciliationService:
    """Saves an analysed workout across the record and screenshot stores.

    The screenshot write always completes before the record commit starts.
    A screenshot failure only degrades the save: the record is still
    committed and the result carries a warning. A record failure propagates
    and nothing is reported as saved.
    """

    DEGRADED_NOTICE = (
        "Workout saved, but the screenshots could not be stored and may be missing."
    )

    def __init__(
        self,
        records: WorkoutRecordRepository,
        screenshots: ScreenshotRepository,
    ) -> None:
        self.records = records
        self.screenshots = screenshots
        self._lock = asyncio.Lock()

    async def save(
        self,
        data: Mapping[str, Any],
        insights: Any,
        image1: ImagePayload = None,
        image2: ImagePayload = None,
    ) -> SaveResult:
        async with self._lock:
            if not self.records.loaded:
                await self.records.load()
            workout_id, existing = self.records.resolve_id(data)

            images_saved = True
            warning: Optional[str] = None
            try:
                await self.screenshots.put(workout_id, image1, image2)
            except Exception as exc:
                logger.warning(
                    "Screenshots for workout %s were not stored: %s", workout_id, exc
                )
                images_saved = False
                warning = self.DEGRADED_NOTICE

            stored_id = await self.records.upsert(
                WorkoutRecord(id=workout_id, data=dict(data or {}), insights=insights)
            )

        return SaveResult(
            record_id=stored_id,
            updated=existing or stored_id != workout_id,
            images_saved=images_saved,
            warning=warning,
        )
