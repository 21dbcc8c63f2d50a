"""
Document stores over the MongoDB collections.

Upserts return an explicit tagged result (``Created``, ``Updated`` or, for
get-or-create lookups, ``Existing``) instead of a bare document so callers can
tell what happened.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple, Union

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import canonical_id, collection_name, create_document, get_documents, midnight, to_object_id
from errors import ConflictError, NotFoundError
from schemas import (
    Assessment, AttendanceRecord, EligibilityRecord, Exam, Role, User,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Created:
    document: Dict[str, Any]


@dataclass(frozen=True)
class Updated:
    document: Dict[str, Any]


@dataclass(frozen=True)
class Existing:
    document: Dict[str, Any]


Upserted = Union[Created, Updated]


def _window(start: Optional[date], end: Optional[date]) -> Dict[str, datetime]:
    # calendar days, both ends inclusive
    rng: Dict[str, datetime] = {}
    if start is not None:
        rng["$gte"] = midnight(start)
    if end is not None:
        rng["$lt"] = midnight(end) + timedelta(days=1)
    return rng


class UserStore:
    def __init__(self, db: Database):
        self.db = db
        self.collection = collection_name(User)

    def get(self, user_id: str) -> Dict[str, Any]:
        doc = self.db[self.collection].find_one({"_id": to_object_id(user_id)})
        if doc is None:
            raise NotFoundError("User not found")
        return doc

    def get_student(self, student_id: str) -> Dict[str, Any]:
        doc = self.db[self.collection].find_one({"_id": to_object_id(student_id), "role": Role.STUDENT.value})
        if doc is None:
            raise NotFoundError("Student not found")
        return doc

    def by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self.db[self.collection].find_one({"email": email})

    def student_by_usn(self, usn: str) -> Optional[Dict[str, Any]]:
        return self.db[self.collection].find_one({"usn": usn, "role": Role.STUDENT.value})

    def students(self, usn: Optional[str] = None, ids: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        filt: Dict[str, Any] = {"role": Role.STUDENT.value}
        if usn:
            filt["usn"] = usn
        if ids is not None:
            filt["_id"] = {"$in": [to_object_id(i) for i in ids]}
        return get_documents(self.db, self.collection, filter_dict=filt, sort=[("name", ASCENDING)])

    def create(self, user: User) -> Dict[str, Any]:
        if user.role == Role.STUDENT.value and user.usn and self.student_by_usn(user.usn):
            raise ConflictError("USN already exists")
        try:
            uid = create_document(self.db, self.collection, user)
        except DuplicateKeyError:
            raise ConflictError("User already exists")
        return self.get(uid)

    def update(self, user_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        fields = {k: v for k, v in fields.items() if v is not None}
        fields["updated_at"] = datetime.utcnow()
        try:
            doc = self.db[self.collection].find_one_and_update(
                {"_id": to_object_id(user_id)},
                {"$set": fields},
                return_document=ReturnDocument.AFTER,
            )
        except DuplicateKeyError:
            raise ConflictError("Email already in use")
        if doc is None:
            raise NotFoundError("User not found")
        return doc

    def delete(self, user_id: str) -> None:
        res = self.db[self.collection].delete_one({"_id": to_object_id(user_id)})
        if res.deleted_count == 0:
            raise NotFoundError("User not found")


class AttendanceStore:
    """Attendance records plus the query the eligibility calculator reads from."""

    def __init__(self, db: Database):
        self.db = db
        self.collection = collection_name(AttendanceRecord)
        self.records = db[self.collection]

    def find(
        self,
        student_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
        subject: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Return the student's records with ``date`` in ``[start, end]``.

        Open bounds are unbounded. ``subject=None`` matches every subject.
        """
        filt: Dict[str, Any] = {"student_id": canonical_id(student_id)}
        if subject is not None:
            filt["subject"] = subject
        rng = _window(start, end)
        if rng:
            filt["date"] = rng
        return get_documents(self.db, self.collection, filter_dict=filt, sort=[("date", ASCENDING)])

    def list(self, day: Optional[date] = None, student_id: Optional[str] = None) -> List[Dict[str, Any]]:
        filt: Dict[str, Any] = {}
        if day is not None:
            filt["date"] = _window(day, day)
        if student_id:
            filt["student_id"] = canonical_id(student_id)
        return get_documents(self.db, self.collection, filter_dict=filt, sort=[("date", DESCENDING)])

    def mark(
        self,
        student_id: str,
        day: date,
        status: str,
        marked_by: str,
        subject: Optional[str] = None,
    ) -> Upserted:
        student_id = canonical_id(student_id)
        key = {"student_id": student_id,"date": midnight(day), "subject": subject}
        existing = self.records.find_one(key)
        if existing is not None:
            return Updated(self._overwrite(existing["_id"], status, marked_by))
        record = AttendanceRecord(
            student_id=student_id, date=key["date"].date(), status=status, subject=subject, marked_by=marked_by,
        )
        try:
            rid = create_document(self.db, self.collection, record)
        except DuplicateKeyError:
            # lost the race against a concurrent insert for the same key
            logger.warning(f"Duplicate attendance for student {student_id} on {day}, updating instead")
            existing = self.records.find_one(key)
            if existing is None:
                raise ConflictError(f"Attendance for student {student_id} on {day} could not be saved")
            return Updated(self._overwrite(existing["_id"], status, marked_by))
        return Created(self.records.find_one({"_id": to_object_id(rid)}))

    def _overwrite(self, record_id, status: str, marked_by: str) -> Dict[str, Any]:
        return self.records.find_one_and_update(
            {"_id": record_id},
            {"$set": {"status": status, "marked_by": marked_by, "updated_at": datetime.utcnow()}},
            return_document=ReturnDocument.AFTER,
        )

    def month_years(self) -> List[Tuple[int, int]]:
        days = self.records.distinct("date")
        return sorted({(d.year, d.month) for d in days if d is not None})


class ExamStore:
    def __init__(self, db: Database):
        self.db = db
        self.collection = collection_name(Exam)

    def get(self, exam_id: str) -> Dict[str, Any]:
        doc = self.db[self.collection].find_one({"_id": to_object_id(exam_id)})
        if doc is None:
            raise NotFoundError("Exam not found")
        return doc

    def list(self, subject: Optional[str] = None, month: Optional[int] = None, year: Optional[int] = None):
        filt: Dict[str, Any] = {}
        if subject:
            filt["subject"] = subject
        if month:
            filt["month"] = month
        if year:
            filt["year"] = year
        return get_documents(self.db, self.collection, filter_dict=filt, sort=[("date", ASCENDING)])

    def create(self, exam: Exam) -> Dict[str, Any]:
        return self.get(create_document(self.db, self.collection, exam))

    def update(self, exam_id: str, fields: Dict[str, Any]) -> Dict[str, Any]:
        fields = {k: v for k, v in fields.items() if v is not None}
        if isinstance(fields.get("date"), date):
            fields["date"] = midnight(fields["date"])
        fields["updated_at"] = datetime.utcnow()
        doc = self.db[self.collection].find_one_and_update(
            {"_id": to_object_id(exam_id)},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        if doc is None:
            raise NotFoundError("Exam not found")
        return doc

    def delete(self, exam_id: str) -> int:
        """Delete the exam and its eligibility records; return how many records went with it."""
        exam = self.get(exam_id)
        res = self.db[self.collection].delete_one({"_id": exam["_id"]})
        if res.deleted_count == 0:
            raise NotFoundError("Exam not found")
        return EligibilityStore(self.db).delete_for_exam(str(exam["_id"]))

    def get_or_create(
        self, subject: str, month: int, year: int, threshold: float, exam_date: date,
    ) -> Union[Created, Existing]:
        doc = self.db[self.collection].find_one({"subject": subject, "month": month, "year": year})
        if doc is not None:
            return Existing(doc)
        exam = Exam(
            name=f"{subject} Exam - {month}/{year}",
            subject=subject,
            date=exam_date,
            semester=1,
            month=month,
            year=year,
            attendance_threshold=threshold,
        )
        doc = self.create(exam)
        logger.info(f"Created new exam: {exam.name} on {exam_date.isoformat()}")
        return Created(doc)


class AssessmentStore:
    def __init__(self, db: Database):
        self.db = db
        self.collection = collection_name(Assessment)

    def get(self, assessment_id: str) -> Dict[str, Any]:
        doc = self.db[self.collection].find_one({"_id": to_object_id(assessment_id)})
        if doc is None:
            raise NotFoundError("Assessment not found")
        return doc

    def create(self, assessment: Assessment) -> Dict[str, Any]:
        return self.get(create_document(self.db, self.collection, assessment))

    def list(self) -> List[Dict[str, Any]]:
        return get_documents(self.db, self.collection, sort=[("date", ASCENDING)])

    def upcoming(self, now: datetime) -> List[Dict[str, Any]]:
        """Assessments dated at or after ``now``; earlier ones on the same day are past."""
        return get_documents(
            self.db, self.collection,
            filter_dict={"date": {"$gte": now}},
            sort=[("date", ASCENDING)],
        )


class EligibilityStore:
    def __init__(self, db: Database):
        self.db = db
        self.collection = collection_name(EligibilityRecord)

    def upsert(self, record: EligibilityRecord) -> Upserted:
        record = record.model_copy(update={
            "student_id": canonical_id(record.student_id),
            "exam_id": canonical_id(record.exam_id),
        })
        key = {"student_id": record.student_id, "exam_id": record.exam_id, "subject": record.subject}
        fields = record.model_dump()
        existing = self.db[self.collection].find_one(key)
        if existing is None:
            try:
                rid = create_document(self.db, self.collection, record)
                return Created(self.db[self.collection].find_one({"_id": to_object_id(rid)}))
            except DuplicateKeyError:
                existing = self.db[self.collection].find_one(key)
                if existing is None:
                    raise ConflictError("Eligibility record could not be saved")
        fields["updated_at"] = datetime.utcnow()
        doc = self.db[self.collection].find_one_and_update(
            {"_id": existing["_id"]},
            {"$set": fields},
            return_document=ReturnDocument.AFTER,
        )
        return Updated(doc)

    def for_exam(self, exam_id: str) -> List[Dict[str, Any]]:
        return get_documents(self.db, self.collection, filter_dict={"exam_id": canonical_id(exam_id)})

    def for_student(self, student_id: str) -> List[Dict[str, Any]]:
        return get_documents(
            self.db, self.collection,
            filter_dict={"student_id": canonical_id(student_id)},
            sort=[("calculated_at", DESCENDING)],
        )

    def delete_for_exam(self, exam_id: str) -> int:
        res = self.db[self.collection].delete_many({"exam_id": canonical_id(exam_id)})
        return res.deleted_count
