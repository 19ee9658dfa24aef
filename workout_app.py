import logging
from typing import Any, List, Mapping, Optional, Protocol

from config import YamlConfig
from db import ScreenshotRepository, StorageSlotRepository, WorkoutRecordRepository
from errors import AnalysisError, ImageStoreError
from history_service import HistoryService
from models import ImagePayload, SaveResult, WorkoutRecord
from reconcile_service import ReconciliationService
from settings_schema import SettingsSchema

logger = logging.getLogger(__name__)


class WorkoutAnalyzer(Protocol):
    """External producer turning two screenshots into workout data."""

    async def extract(self, image1: ImagePayload, image2: ImagePayload) -> dict:
        ...

    async def insights(self, data: dict, history: List[WorkoutRecord]) -> Any:
        ...


class WorkoutApp:
    """Owns the stores and services of one workout history.

    Call :meth:`start` before use and :meth:`close` afterwards, or use the
    app as an async context manager.
    """

    def __init__(
        self,
        settings: Optional[SettingsSchema] = None,
        yaml_path: str = "settings.yaml",
    ) -> None:
        self.config = YamlConfig(yaml_path)
        self.settings = settings or self.config.settings()
        self.slots = StorageSlotRepository(self.settings.db_path)
        self.records = WorkoutRecordRepository(self.slots, self.settings.record_slot)
        self.screenshots = ScreenshotRepository(self.settings.images_db_path)
        self.reconciler = ReconciliationService(self.records, self.screenshots)
        self.history = HistoryService(
            self.records,
            self.screenshots,
            window=self.settings.history_limit,
            context_limit=self.settings.context_limit,
        )

    async def start(self) -> None:
        await self.records.load()
        try:
            await self.screenshots.open()
        except ImageStoreError as exc:
            logger.warning("Screenshot storage unavailable, continuing without it: %s", exc)

    async def close(self) -> None:
        await self.screenshots.close()

    async def __aenter__(self) -> "WorkoutApp":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    @property
    def api_key(self) -> Optional[str]:
        return self.settings.api_key

    def set_api_key(self, api_key: str) -> None:
        self.config.update(api_key=api_key)
        self.settings = self.settings.model_copy(update={"api_key": api_key})

    async def save(
        self,
        data: Mapping[str, Any],
        insights: Any,
        image1: ImagePayload = None,
        image2: ImagePayload = None,
    ) -> SaveResult:
        return await self.reconciler.save(data, insights, image1, image2)

    async def analyze_and_save(
        self, analyzer: WorkoutAnalyzer, image1: ImagePayload, image2: ImagePayload
    ) -> SaveResult:
        """Analyze two screenshots and save the result.

        The analyzer gets the last ``context_limit`` workouts as history for
        its insights. Nothing is stored when analysis fails.
        """
        if image1 is None or image2 is None:
            raise ValueError("two screenshots are required for analysis")
        try:
            data = await analyzer.extract(image1, image2)
        except Exception as exc:
            raise AnalysisError(f"Failed to analyze screenshots: {exc}") from exc
        try:
            insights = await analyzer.insights(data, self.history.context())
        except Exception as exc:
            raise AnalysisError(f"Failed to generate insights: {exc}") from exc
        return await self.save(data, insights, image1, image2)
