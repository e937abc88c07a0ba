"""
Pipeline exceptions.

These never cross a stage boundary: each stage catches them and turns
them into a status marker or an **Error:** solution. Only
InvalidTransitionError reaches callers, since it signals a misuse of
the controller rather than a failed model call.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""


class ImageDecodeError(PipelineError):
    """The input bytes are not a recognized image encoding."""


class PreprocessingError(PipelineError):
    """The preprocessing collaborator could not transform the image."""


class EmptyResponseError(PipelineError):
    """A model service answered without any usable candidate."""

    def __init__(self, message: str, finish_reason: str = "UNKNOWN"):
        super().__init__(message)
        self.finish_reason = finish_reason


class InvalidTransitionError(PipelineError):
    """The controller was asked to do something its current stage forbids."""

    def __init__(self, action: str, stage):
        super().__init__(f"Cannot {action} while pipeline is {stage.value}")
        self.action = action
        self.stage = stage
