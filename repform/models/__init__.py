from repform.models.model_base import Base
from repform.models.model_calibration import CalibrationRecord

__all__ = ['Base', 'CalibrationRecord']
