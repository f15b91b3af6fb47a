import enum
import logging
from typing import Optional

logger = logging.getLogger(__name__)


class CustomException(Exception):
    code = '000'
    message = 'Something went wrong'

    def __init__(self, code: Optional[str] = None, message: Optional[str] = None):
        if code:
            self.code = code
        if message:
            self.message = message
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


class InsufficientFramesError(CustomException):
    code = '100'
    message = 'Not enough calibration frames were collected'

    def __init__(self, collected: int, required: int):
        self.collected = collected
        self.required = required
        super().__init__(message=f"Collected {collected} of {required} required calibration frames")


class UnsupportedExerciseError(CustomException):
    code = '101'
    message = 'Exercise is not supported for calibration'

    def __init__(self, exercise):
        self.exercise = exercise
        super().__init__(message=f"Exercise '{getattr(exercise, 'value', exercise)}' is not supported")


class RepositoryOperation(enum.Enum):
    SAVE = 'save'
    FETCH = 'fetch'
    DELETE = 'delete'
    ARCHIVE = 'archive'
    CLEANUP = 'cleanup'
    MIGRATION = 'migration'


class CalibrationRepositoryError(CustomException):
    code = '200'
    message = 'Calibration storage failed'

    def __init__(self, operation: RepositoryOperation, detail: str = ''):
        self.operation = operation
        self.detail = detail
        text = f"Failed to {operation.value} calibration data"
        if detail:
            text = f"{text}: {detail}"
        super().__init__(code=f"2{list(RepositoryOperation).index(operation):02d}", message=text)


def describe_error(exc: Exception) -> str:
    """User-facing text for an error surfaced by the calibration flow."""
    if isinstance(exc, CustomException):
        return exc.message
    logger.error(f"Unexpected error: {exc!r}")
    return CustomException.message
