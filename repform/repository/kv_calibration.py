"""
Flat key-value calibration store.

Keeps the latest profile per exercise under ``calibration_<exercise>``
in a single JSON file. Used when the database is unavailable, and as
the source of legacy profiles to migrate.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import ValidationError

from repform.engine.core.data_types import CalibrationData, ExerciseType
from repform.schemas.sche_calibration import CalibrationDocument

logger = logging.getLogger(__name__)

KEY_PREFIX = "calibration_"


def key_for(exercise: ExerciseType) -> str:
    return f"{KEY_PREFIX}{exercise.value}"


class KeyValueCalibrationStore:
    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _read(self) -> Dict[str, dict]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Unreadable calibration store {self.path}: {e}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: Dict[str, dict]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".calibration-", suffix=".json")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(data, f, indent=2)
            os.replace(tmp, self.path)
        except OSError:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    def save(self, profile: CalibrationData) -> None:
        with self._lock:
            data = self._read()
            data[key_for(profile.exercise)] = profile.to_dict()
            self._write(data)
        logger.info(f"Stored {profile.exercise.value} calibration in key-value store")

    def load(self, exercise: ExerciseType) -> Optional[CalibrationData]:
        with self._lock:
            raw = self._read().get(key_for(exercise))
        if raw is None:
            return None
        try:
            return CalibrationDocument.model_validate(raw).to_domain()
        except ValidationError as e:
            logger.warning(f"Invalid {exercise.value} calibration in key-value store: {e}")
            return None

    def remove(self, exercise: ExerciseType) -> bool:
        with self._lock:
            data = self._read()
            if data.pop(key_for(exercise), None) is None:
                return False
            self._write(data)
            return True

    def keys(self) -> List[str]:
        with self._lock:
            return [k for k in self._read() if k.startswith(KEY_PREFIX)]

    def items(self) -> Dict[ExerciseType, CalibrationData]:
        """Every valid stored profile; invalid entries are skipped."""
        profiles = {}
        for key in self.keys():
            try:
                exercise = ExerciseType(key[len(KEY_PREFIX):])
            except ValueError:
                logger.warning(f"Unknown exercise key in key-value store: {key}")
                continue
            profile = self.load(exercise)
            if profile is not None:
                profiles[exercise] = profile
        return profiles
