from typing import Optional


class ScenecraftError(RuntimeError):
    """Base class for every error raised by scenecraft."""


class SegmentationError(ScenecraftError):
    pass


class UnsupportedFormatError(SegmentationError):
    pass


class GenerationError(ScenecraftError):
    """A call to the generation backend failed or returned an unusable body."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class StoreError(ScenecraftError):
    pass


class DocumentNotFoundError(StoreError):
    pass


class ChapterNotFoundError(StoreError):
    pass


class SceneNotFoundError(StoreError):
    pass


class DocumentExistsError(StoreError):
    pass


class InvalidTransitionError(StoreError):
    pass


class StageError(ScenecraftError):
    pass


class NoRolesExtractedError(StageError):
    pass
