class StorageError(Exception):
    """Base class for persistence failures."""


class RecordStoreError(StorageError):
    """The workout history could not be read or written. Nothing was saved."""


class ImageStoreError(StorageError):
    """A screenshot operation failed. Workout records are unaffected."""


class AnalysisError(Exception):
    """The screenshot analyzer failed to produce workout data."""
