from typing import Any, Optional, Union

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from tools import StorageTools

ImagePayload = Union[str, bytes, None]


class WorkoutRecord(BaseModel):
    """A persisted workout: opaque metrics plus the insights generated for them.

    ``data`` and ``insights`` are stored as given. Only the ``date``,
    ``workoutType`` and ``duration`` entries of ``data`` are ever read, to
    build the dedup key. Records written by the browser version of the app use
    integer ids and a ``timestamp`` field; both are accepted on load.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = None
    created_at: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "created_at", "timestamp"),
        serialization_alias="createdAt",
    )
    data: dict[str, Any] = Field(default_factory=dict)
    insights: Any = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        return str(value)

    @field_validator("data", mode="before")
    @classmethod
    def _default_data(cls, value: Any) -> Any:
        return {} if value is None else value

    def to_json_dict(self) -> dict:
        return self.model_dump(by_alias=True)


class ImagePair(BaseModel):
    """The two screenshots stored for one workout."""

    workout_id: str
    image1: ImagePayload = None
    image2: ImagePayload = None
    stored_at: Optional[str] = None

    @property
    def has_images(self) -> bool:
        return self.image1 is not None or self.image2 is not None


class StorageUsage(BaseModel):
    total_bytes: int = 0
    pair_count: int = 0

    @property
    def total_mb(self) -> str:
        return StorageTools.to_megabytes(self.total_bytes)


class SaveResult(BaseModel):
    """Outcome of one save cycle, used for user feedback."""

    record_id: str
    updated: bool = False
    images_saved: bool = True
    warning: Optional[str] = None

    @property
    def degraded(self) -> bool:
        return not self.images_saved


class WorkoutDetail(BaseModel):
    record: WorkoutRecord
    images: Optional[ImagePair] = None

    @property
    def has_images(self) -> bool:
        return self.images is not None and self.images.has_images
