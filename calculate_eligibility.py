"""
Recalculate exam eligibility from attendance.

Usage:
    calculate-eligibility --month 5 --year 2024 --threshold 70
    calculate-eligibility --month 5 --year 2024 --students <id>,<id> --subjects "Data Science"
    calculate-eligibility --all-months

Every student x subject pair is recalculated independently; pairs that fail
are reported at the end and make the exit code 1. Rerunning is safe because
each eligibility record is upserted.
"""

import argparse
import logging
import sys

from config import Settings
from context import AppContext
from eligibility import calculate_all_months, calculate_batch
from errors import AttendanceError, PartialBatchFailure
from schemas import SUBJECTS

logger = logging.getLogger("calculate_eligibility")


def _csv(value: str):
    return [v.strip() for v in value.split(",") if v.strip()]


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Calculate exam eligibility based on attendance")
    parser.add_argument("--month", type=int, help="Month number (1-12)")
    parser.add_argument("--year", type=int, help="Year")
    parser.add_argument("--threshold", type=float, default=None, help="Attendance threshold percentage (default: 70)")
    parser.add_argument("--students", default="all", help='Student IDs (comma-separated) or "all"')
    parser.add_argument("--subjects", default="all", help='Subject names (comma-separated) or "all"')
    parser.add_argument("--all-months", action="store_true", help="Every month that has attendance data")
    parser.add_argument("--skip-empty", action="store_true", help="Do not store pairs without any class")
    args = parser.parse_args(argv)

    if not args.all_months:
        if args.month is None or args.year is None:
            parser.error("--month and --year are required unless --all-months is given")
        if not 1 <= args.month <= 12:
            parser.error("Month must be between 1 and 12")
        if not 2000 <= args.year <= 2100:
            parser.error("Year must be between 2000 and 2100")
    if args.threshold is not None and not 0 <= args.threshold <= 100:
        parser.error("Threshold must be between 0 and 100")
    if args.subjects != "all":
        for subject in _csv(args.subjects):
            if subject not in SUBJECTS:
                parser.error(f"Invalid subject: {subject}. Available subjects: {', '.join(SUBJECTS)}")
    return args


def run(ctx: AppContext, args) -> int:
    threshold = ctx.settings.attendance_threshold if args.threshold is None else args.threshold

    if args.all_months:
        report = calculate_all_months(ctx, threshold=threshold, skip_empty=args.skip_empty)
    else:
        ids = None if args.students == "all" else _csv(args.students)
        students = ctx.users.students(ids=ids)
        if not students:
            logger.error("No students found. Please add some students first or check your student IDs.")
            return 1
        logger.info(f"Found {len(students)} students")
        subjects = SUBJECTS if args.subjects == "all" else _csv(args.subjects)
        logger.info(f"Using {len(subjects)} subjects: {', '.join(subjects)}")
        report = calculate_batch(
            ctx, [str(s["_id"]) for s in students], subjects,
            args.month, args.year, threshold, skip_empty=args.skip_empty,
        )

    logger.info(f"Created {report.created} new eligibility records, updated {report.updated}")
    try:
        report.raise_for_failures()
    except PartialBatchFailure as exc:
        logger.error(exc.message)
        for item in exc.failures:
            logger.error(f"  student {item.student_id}, {item.subject}: {item.error}")
        return 1
    return 0


def main(argv=None) -> int:
    args = parse_args(argv)
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        ctx = AppContext.from_settings(settings)
        return run(ctx, args)
    except AttendanceError as exc:
        logger.error(f"Error calculating eligibility: {exc.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
