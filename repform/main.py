"""
RepForm command line.

    repform stats                      # calibration statistics
    repform list --exercise pushup     # stored calibrations
    repform prune --days 90            # delete old calibrations
    repform migrate                    # import key-value profiles into the database
    repform simulate --exercise pushup --reps 5
"""

import argparse
import asyncio
import logging
import logging.config
import os
from datetime import datetime
from typing import List, Optional

from repform.core.config import settings
from repform.db.base import create_session_factory
from repform.engine.core.data_types import CalibrationMode, ExerciseType
from repform.engine.utils import simulation
from repform.helpers.exception_handler import CustomException, describe_error
from repform.repository.kv_calibration import KeyValueCalibrationStore
from repform.services.srv_calibration import CalibrationService
from repform.services.srv_calibration_store import CalibrationStore
from repform.services.srv_feedback import FeedbackService

logger = logging.getLogger(__name__)

SIMULATED_FRAME_INTERVAL = 0.05  # seconds between synthetic frames
SIMULATION_FRAME_LIMIT = 600

POSE_BUILDERS = {
    ExerciseType.PUSHUP: (simulation.pushup_pose, 180.0, 85.0),
    ExerciseType.SITUP: (simulation.situp_pose, 5.0, 85.0),
    ExerciseType.PULLUP: (simulation.pullup_pose, 180.0, 80.0),
}


def setup_logging(config_file: str = settings.LOGGING_CONFIG_FILE) -> None:
    if os.path.exists(config_file):
        logging.config.fileConfig(config_file, disable_existing_loggers=False)
    else:
        logging.basicConfig(level=logging.INFO)


def build_store(database_url: Optional[str] = None) -> CalibrationStore:
    return CalibrationStore(
        create_session_factory(database_url or settings.DATABASE_URL),
        excellent=settings.QUALITY_EXCELLENT,
        good=settings.QUALITY_GOOD,
        acceptable=settings.QUALITY_ACCEPTABLE,
        poor=settings.QUALITY_POOR,
    )


def parse_exercise(value: str) -> ExerciseType:
    try:
        return ExerciseType(value.strip().lower().replace('-', ''))
    except ValueError:
        raise argparse.ArgumentTypeError(f"unknown exercise: {value}")


# ==================== COMMANDS ====================

async def cmd_stats(args) -> int:
    stats = await build_store(args.database_url).statistics()
    data = stats.to_dict()
    print("=" * 50)
    print("CALIBRATION STATISTICS")
    print("=" * 50)
    print(f"  Total:            {data['total']}")
    print(f"  Usable:           {data['usable']}")
    print(f"  Archived:         {data['archived']}")
    print(f"  Average score:    {data['average_score']:.1f}")
    print(f"  Average conf.:    {data['average_confidence']:.2f}")
    for exercise, count in sorted(data["by_exercise"].items()):
        print(f"  [{exercise}] {count}")
    for quality, count in sorted(data["by_quality"].items()):
        print(f"  ({quality}) {count}")
    return 0


async def cmd_list(args) -> int:
    store = build_store(args.database_url)
    profiles = await store.get_all(args.exercise, include_archived=args.all)
    if not profiles:
        print("[INFO] No calibrations stored")
        return 0
    for profile in profiles:
        created = datetime.fromtimestamp(profile.timestamp).strftime("%Y-%m-%d %H:%M")
        quality = store.quality_of(profile)
        print(
            f"{profile.id}  {profile.exercise.value:<7} {created}  "
            f"score={profile.calibration_score:5.1f}  {quality.value}"
        )
    return 0


async def cmd_prune(args) -> int:
    deleted = await build_store(args.database_url).prune(args.days)
    print(f"[INFO] Deleted {deleted} calibrations older than {args.days} days")
    return 0


async def cmd_migrate(args) -> int:
    store = build_store(args.database_url)
    migrated = await store.migrate_legacy(KeyValueCalibrationStore(args.fallback_path))
    print(f"[INFO] Migrated {migrated} calibrations")
    return 0


async def cmd_simulate(args) -> int:
    exercise: ExerciseType = args.exercise
    if exercise not in POSE_BUILDERS:
        print(f"[ERROR] Cannot simulate {exercise.value}")
        return 1
    build_pose, start_angle, target_angle = POSE_BUILDERS[exercise]

    config = settings.model_copy(update={"FRAME_THROTTLE_INTERVAL": 0.0})
    service = CalibrationService(
        store=build_store(args.database_url),
        fallback_store=KeyValueCalibrationStore(args.fallback_path),
        config=config,
    )

    print(f"\n[PHASE 1] Calibrating {exercise.display_name} ({args.mode.value})...")
    service.begin(exercise, args.mode, use_timer=False)
    now = 0.0
    for _ in range(SIMULATION_FRAME_LIMIT):
        if not service.collector.is_collecting:
            break
        service.submit_pose(build_pose(start_angle, timestamp=now))
        now += SIMULATED_FRAME_INTERVAL
    outcome = await service.finalize()
    if outcome is None:
        print("[ERROR] Calibration produced no profile")
        return 1
    print(f"[CALIBRATION] {outcome.strategy}: score {outcome.profile.calibration_score:.1f} "
          f"({outcome.quality.value}), {outcome.position.description}")
    if outcome.error is not None:
        print(f"[WARNING] {outcome.error.message}")

    print(f"\n[PHASE 2] Simulating {args.reps} reps...")
    feedback = FeedbackService(service, config=config)
    feedback.channel.subscribe(
        lambda event: print(f"  [{event.modality.value.upper()}] {event.message}"), replay=False,
    )
    await feedback.start(exercise)
    angles: List[float] = simulation.rep_angles(start_angle, target_angle, args.reps)
    for angle in angles:
        feedback.process_pose(build_pose(angle, timestamp=now), now=now)
        feedback.channel.drain()
        now += SIMULATED_FRAME_INTERVAL
    summary = feedback.stop()

    print("\n" + "=" * 50)
    print(f"  Reps: {summary['reps']}")
    print(f"  Average form: {summary['average_form_score']:.2f}")
    print("=" * 50)
    return 0


COMMANDS = {
    "stats": cmd_stats,
    "list": cmd_list,
    "prune": cmd_prune,
    "migrate": cmd_migrate,
    "simulate": cmd_simulate,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="repform", description="RepForm calibration tools")
    parser.add_argument("--database-url", type=str, default=settings.DATABASE_URL)
    parser.add_argument("--fallback-path", type=str, default=settings.FALLBACK_STORE_PATH)
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("stats", help="Show calibration statistics")

    list_parser = subparsers.add_parser("list", help="List stored calibrations")
    list_parser.add_argument("--exercise", type=parse_exercise, default=None)
    list_parser.add_argument("--all", action="store_true", help="Include archived calibrations")

    prune_parser = subparsers.add_parser("prune", help="Delete old calibrations")
    prune_parser.add_argument("--days", type=int, default=settings.RETENTION_DAYS)

    subparsers.add_parser("migrate", help="Import key-value calibrations into the database")

    simulate_parser = subparsers.add_parser("simulate", help="Calibrate and score synthetic reps")
    simulate_parser.add_argument("--exercise", type=parse_exercise, default=ExerciseType.PUSHUP)
    simulate_parser.add_argument("--reps", type=int, default=5)
    simulate_parser.add_argument(
        "--mode", type=CalibrationMode, choices=list(CalibrationMode), default=CalibrationMode.FULL,
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging()
    try:
        return asyncio.run(COMMANDS[args.command](args))
    except CustomException as e:
        logger.error(f"Command {args.command} failed: {e.code} {e.message}")
        print(f"[ERROR] {describe_error(e)}")
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
