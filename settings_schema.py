from typing import Optional

from pydantic import BaseModel, Field, ValidationError


class SettingsSchema(BaseModel):
    db_path: str = "workouts.db"
    images_db_path: str = "workout_images.db"
    record_slot: str = "fitnessWorkouts"
    history_limit: int = Field(10, ge=1)
    context_limit: int = Field(5, ge=0)
    api_key: Optional[str] = None


def validate_settings(data: dict) -> None:
    try:
        SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))


def load_settings(data: dict) -> SettingsSchema:
    """Return validated settings, filling in defaults for missing keys."""
    try:
        return SettingsSchema(**data)
    except ValidationError as e:
        raise ValueError(str(e))
