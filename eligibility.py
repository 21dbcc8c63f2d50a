"""
Attendance eligibility calculation.

A student's eligibility over a window is the share of attendance records with
status ``present`` among all of their records in that window (both ends
inclusive), compared non-strictly against a threshold percentage. A window
without any record counts as 0 %.

Three forms are provided:

* ``compute_eligibility`` - read-only stats for dashboards.
* ``record_eligibility`` - the same computation over an exam's month, upserted
  as the (student, exam, subject) EligibilityRecord.
* ``calculate_batch`` / ``calculate_exam_eligibility`` /
  ``calculate_all_months`` - sequential student x subject recalculation where
  a failing pair is logged and reported without stopping the others.
"""

import calendar
import logging
from dataclasses import asdict, dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pymongo.errors import PyMongoError

from errors import AttendanceError, PartialBatchFailure, ValidationError
from schemas import SUBJECTS, AttendanceStatus, EligibilityRecord
from store import AttendanceStore, Created, Updated

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EligibilityStats:
    total_classes: int
    attended_classes: int
    attendance_percentage: float
    is_eligible: bool

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Skipped:
    """A pair with no classes that was not persisted."""
    stats: EligibilityStats


Outcome = Union[Created, Updated, Skipped]


def validate_threshold(threshold) -> float:
    if threshold is None or not 0 <= threshold <= 100:
        raise ValidationError(f"Threshold must be between 0 and 100, got {threshold}")
    return threshold


def validate_subject(subject: Optional[str]) -> Optional[str]:
    if subject is None:
        return None
    value = getattr(subject, "value", subject)
    if value not in SUBJECTS:
        raise ValidationError(f"Invalid subject: {value}. Available subjects: {', '.join(SUBJECTS)}")
    return value


def validate_window(start: date, end: date) -> None:
    if start > end:
        raise ValidationError(f"Start date {start} is after end date {end}")


def month_window(year: int, month: int) -> Tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValidationError(f"Month must be between 1 and 12, got {month}")
    last = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last)


def summarize(records: Iterable[Dict[str, Any]], threshold: float) -> EligibilityStats:
    records = list(records)
    total = len(records)
    attended = sum(1 for r in records if r.get("status") == AttendanceStatus.PRESENT.value)
    percentage = attended / total * 100 if total > 0 else 0.0
    return EligibilityStats(
        total_classes=total,
        attended_classes=attended,
        attendance_percentage=percentage,
        is_eligible=percentage >= threshold,
    )


def compute_eligibility(
    attendance: AttendanceStore,
    student_id: str,
    start: date,
    end: date,
    threshold: float,
    subject: Optional[str] = None,
) -> EligibilityStats:
    """Stats for one student over ``[start, end]``; ``subject=None`` covers every subject."""
    validate_window(start, end)
    validate_threshold(threshold)
    subject = validate_subject(subject)
    records = attendance.find(student_id, start=start, end=end, subject=subject)
    return summarize(records, threshold)


def assessment_eligibility(attendance: AttendanceStore, student_id: str, assessment: Dict[str, Any]) -> EligibilityStats:
    return compute_eligibility(
        attendance,
        student_id,
        assessment["start_date"].date(),
        assessment["end_date"].date(),
        assessment.get("attendance_threshold", 70),
    )


def record_eligibility(
    ctx,
    student_id: str,
    exam: Dict[str, Any],
    subject: Optional[str] = None,
    threshold: Optional[float] = None,
    skip_empty: bool = False,
) -> Outcome:
    subject = subject or exam["subject"]
    if threshold is None:
        threshold = exam.get("attendance_threshold", ctx.settings.attendance_threshold)
    start, end = month_window(exam["year"], exam["month"])
    stats = compute_eligibility(ctx.attendance, student_id, start, end, threshold, subject)
    if skip_empty and stats.total_classes == 0:
        return Skipped(stats)
    record = EligibilityRecord(
        student_id=student_id,
        exam_id=str(exam["_id"]),
        subject=subject,
        **stats.as_dict(),
    )
    return ctx.eligibility.upsert(record)


@dataclass
class BatchItem:
    student_id: str
    subject: Optional[str]
    exam_id: Optional[str] = None
    outcome: str = "failed"
    stats: Optional[EligibilityStats] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome != "failed"

    def as_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["success"] = self.ok
        return d


@dataclass
class BatchReport:
    items: List[BatchItem] = field(default_factory=list)

    def _count(self, outcome: str) -> int:
        return sum(1 for i in self.items if i.outcome == outcome)

    @property
    def succeeded(self) -> List[BatchItem]:
        return [i for i in self.items if i.ok]

    @property
    def failed(self) -> List[BatchItem]:
        return [i for i in self.items if not i.ok]

    @property
    def created(self) -> int:
        return self._count("created")

    @property
    def updated(self) -> int:
        return self._count("updated")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    def extend(self, other: "BatchReport") -> None:
        self.items.extend(other.items)

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialBatchFailure(self.failed)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "count": len(self.items),
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "failed": len(self.failed),
            "results": [i.as_dict() for i in self.items],
        }


def _run_pair(ctx, report: BatchReport, student_id: str, exam: Dict[str, Any], threshold: Optional[float], skip_empty: bool):
    subject = exam["subject"]
    item = BatchItem(student_id=student_id, subject=subject, exam_id=str(exam["_id"]))
    try:
        outcome = record_eligibility(ctx, student_id, exam, threshold=threshold, skip_empty=skip_empty)
    except (AttendanceError, PyMongoError) as exc:
        logger.exception(f"Eligibility failed for student {student_id}, subject {subject}")
        item.error = getattr(exc, "message", str(exc))
    else:
        if isinstance(outcome, Skipped):
            item.outcome, item.stats = "skipped", outcome.stats
            logger.info(f"  - {subject}: skipped, no classes")
        else:
            doc = outcome.document
            item.outcome = "created" if isinstance(outcome, Created) else "updated"
            item.stats = EligibilityStats(
                total_classes=doc["total_classes"],
                attended_classes=doc["attended_classes"],
                attendance_percentage=doc["attendance_percentage"],
                is_eligible=doc["is_eligible"],
            )
            logger.info(
                f"  - {subject}: {doc['attended_classes']}/{doc['total_classes']} classes "
                f"({doc['attendance_percentage']:.2f}%) "
                f"{'ELIGIBLE' if doc['is_eligible'] else 'NOT ELIGIBLE'} [{item.outcome}]"
            )
    report.items.append(item)


def calculate_batch(
    ctx,
    student_ids: List[str],
    subjects: List[str],
    month: int,
    year: int,
    threshold: float,
    skip_empty: bool = False,
) -> BatchReport:
    """Recalculate every student x subject pair for one month.

    The (subject, month, year) exam is fetched or created per subject.
    Failures are collected in the returned report; call
    ``raise_for_failures`` to turn them into an exception.
    """
    _, exam_date = month_window(year, month)
    validate_threshold(threshold)
    report = BatchReport()
    logger.info(f"Calculating eligibility for {month}/{year} with threshold {threshold}%")

    for subject in subjects:
        try:
            subject = validate_subject(subject)
            exam = ctx.exams.get_or_create(subject, month, year, threshold, exam_date).document
        except (AttendanceError, PyMongoError) as exc:
            logger.exception(f"Could not prepare exam for subject {subject} in {month}/{year}")
            message = getattr(exc, "message", str(exc))
            report.items.extend(
                BatchItem(student_id=sid, subject=getattr(subject, "value", subject), error=message)
                for sid in student_ids
            )
            continue
        logger.info(f"Using exam: {exam['name']}")
        for student_id in student_ids:
            _run_pair(ctx, report, student_id, exam, threshold, skip_empty)

    logger.info(
        f"Eligibility calculation finished: {report.created} created, {report.updated} updated, "
        f"{report.skipped} skipped, {len(report.failed)} failed"
    )
    return report


def calculate_exam_eligibility(ctx, exam_id: str) -> BatchReport:
    """Recalculate every student against one exam's subject, threshold and month."""
    exam = ctx.exams.get(exam_id)
    report = BatchReport()
    students = ctx.users.students()
    logger.info(f"Calculating eligibility for exam {exam['name']} ({len(students)} students)")
    for student in students:
        _run_pair(ctx, report, str(student["_id"]), exam, None, False)
    return report


def calculate_all_months(ctx, threshold: Optional[float] = None, skip_empty: bool = False) -> BatchReport:
    """Recalculate all students x all subjects for every month present in the attendance data."""
    if threshold is None:
        threshold = ctx.settings.attendance_threshold
    report = BatchReport()
    student_ids = [str(s["_id"]) for s in ctx.users.students()]
    if not student_ids:
        logger.warning("No students found, nothing to calculate")
        return report
    month_years = ctx.attendance.month_years()
    logger.info(f"Found attendance records for {len(month_years)} month-year combinations")
    for year, month in month_years:
        report.extend(calculate_batch(ctx, student_ids, SUBJECTS, month, year, threshold, skip_empty))
    return report
