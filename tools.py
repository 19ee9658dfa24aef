import base64
import mimetypes
import os
from typing import Any, Mapping, Optional


class WorkoutKey:
    """Derives the content key that identifies the same underlying workout."""

    FIELDS: tuple[str, str, str] = ("date", "workoutType", "duration")
    SEPARATOR: str = "_"

    @staticmethod
    def segment(value: Any) -> str:
        """Render one key field; missing values become an empty segment."""
        if value is None:
            return ""
        return str(value)

    @classmethod
    def compute(cls, data: Optional[Mapping[str, Any]]) -> str:
        """Return ``date_workoutType_duration`` for ``data``.

        Values are joined verbatim. A separator inside a value is not
        escaped, so ``("a_b", "c")`` and ``("a", "b_c")`` produce the same key.
        """
        data = data or {}
        return cls.SEPARATOR.join(cls.segment(data.get(f)) for f in cls.FIELDS)

    @classmethod
    def of(cls, record) -> str:
        """Return the key of a stored workout record."""
        return cls.compute(record.data)


class StorageTools:
    """Helpers for sizing and encoding screenshot payloads."""

    BYTES_PER_MB = 1024 * 1024

    @staticmethod
    def to_megabytes(total_bytes: int) -> str:
        return f"{total_bytes / StorageTools.BYTES_PER_MB:.2f}"

    @staticmethod
    def encode_image(path: str) -> str:
        """Return the file at ``path`` as a base64 ``data:`` URL."""
        mime, _ = mimetypes.guess_type(path)
        with open(os.path.expanduser(path), "rb") as f:
            encoded = base64.b64encode(f.read()).decode("ascii")
        return f"data:{mime or 'application/octet-stream'};base64,{encoded}"
