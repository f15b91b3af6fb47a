"""Tests for the key-value calibration store and stored document schema."""

import json
from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from repform.engine.core.data_types import ExerciseType
from repform.repository.kv_calibration import KeyValueCalibrationStore, key_for
from repform.schemas.sche_calibration import CalibrationDocument


class TestKeyValueStore:
    def test_round_trip(self, kv_store: KeyValueCalibrationStore, profile_factory) -> None:
        profile = profile_factory()
        kv_store.save(profile)
        assert kv_store.load(ExerciseType.PUSHUP) == profile
        assert kv_store.keys() == ["calibration_pushup"]

    def test_one_profile_per_exercise(self, kv_store: KeyValueCalibrationStore, profile_factory) -> None:
        kv_store.save(profile_factory(score=70.0))
        newer = profile_factory(score=85.0)
        kv_store.save(newer)
        kv_store.save(profile_factory(ExerciseType.SITUP))

        assert kv_store.load(ExerciseType.PUSHUP) == newer
        assert set(kv_store.items()) == {ExerciseType.PUSHUP, ExerciseType.SITUP}

    def test_missing(self, kv_store: KeyValueCalibrationStore) -> None:
        assert kv_store.load(ExerciseType.PULLUP) is None
        assert kv_store.keys() == []
        assert not kv_store.remove(ExerciseType.PULLUP)

    def test_remove(self, kv_store: KeyValueCalibrationStore, profile_factory) -> None:
        kv_store.save(profile_factory())
        assert kv_store.remove(ExerciseType.PUSHUP)
        assert kv_store.load(ExerciseType.PUSHUP) is None

    def test_corrupt_file_reads_empty(self, kv_store: KeyValueCalibrationStore) -> None:
        kv_store.path.parent.mkdir(parents=True, exist_ok=True)
        kv_store.path.write_text("{not json", encoding="utf-8")
        assert kv_store.load(ExerciseType.PUSHUP) is None
        assert kv_store.items() == {}

    def test_invalid_entries_are_skipped(self, kv_store: KeyValueCalibrationStore, profile_factory) -> None:
        kv_store.save(profile_factory(ExerciseType.SITUP))
        data = json.loads(kv_store.path.read_text(encoding="utf-8"))
        data[key_for(ExerciseType.PUSHUP)] = {"id": "broken"}
        data["calibration_yoga"] = {"id": "unknown"}
        kv_store.path.write_text(json.dumps(data), encoding="utf-8")

        assert kv_store.load(ExerciseType.PUSHUP) is None
        assert set(kv_store.items()) == {ExerciseType.SITUP}

    def test_reads_camel_case_documents(self, kv_store: KeyValueCalibrationStore) -> None:
        legacy = {
            "id": 42,
            "timestamp": "2024-03-01T12:00:00Z",
            "exercise": "Push-Up",
            "deviceHeight": 1.1,
            "calibrationScore": 77.5,
            "confidenceLevel": 0.775,
            "frameCount": 60,
            "visibilityThresholds": {"minimumConfidence": 0.7, "criticalJoints": 0.6, "supportJoints": 0.65},
            "validationRanges": {"angleTolerances": {"pushup_elbow": 12}},
        }
        kv_store.path.parent.mkdir(parents=True, exist_ok=True)
        kv_store.path.write_text(json.dumps({"calibration_pushup": legacy}), encoding="utf-8")

        profile = kv_store.load(ExerciseType.PUSHUP)

        assert profile.id == "42"
        assert profile.exercise is ExerciseType.PUSHUP
        assert profile.device_height == pytest.approx(1.1)
        assert profile.timestamp == pytest.approx(datetime(2024, 3, 1, 12, tzinfo=timezone.utc).timestamp())
        assert profile.validation_ranges.angle_tolerance("pushup_elbow") == pytest.approx(12.0)
        thresholds = profile.visibility_thresholds
        assert thresholds.minimum_confidence <= thresholds.support_joints <= thresholds.critical_joints


class TestCalibrationDocument:
    def test_from_domain_round_trip(self, profile_factory) -> None:
        profile = profile_factory(ExerciseType.PULLUP)
        document = CalibrationDocument.from_domain(profile)
        restored = CalibrationDocument.model_validate_json(document.model_dump_json()).to_domain()
        assert restored == profile

    @pytest.mark.parametrize("score", [-1.0, 100.5])
    def test_score_range(self, profile_factory, score: float) -> None:
        data = profile_factory().to_dict()
        data["calibration_score"] = score
        with pytest.raises(ValidationError):
            CalibrationDocument.model_validate(data)

    def test_unknown_exercise(self, profile_factory) -> None:
        data = profile_factory().to_dict()
        data["exercise"] = "yoga"
        with pytest.raises(ValidationError):
            CalibrationDocument.model_validate(data)

    @pytest.mark.parametrize("timestamp", [1700000000, "1700000000", "2023-11-14T22:13:20+00:00"])
    def test_timestamp_formats(self, profile_factory, timestamp) -> None:
        data = profile_factory().to_dict()
        data["timestamp"] = timestamp
        assert CalibrationDocument.model_validate(data).timestamp == pytest.approx(1_700_000_000.0)
