"""
Database Schemas for the Attendance & Exam Eligibility System

Each Pydantic model below maps to a MongoDB collection (class name lowercased).
Use these to validate data and as the source of truth for the application domain.
"""

from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, List
from datetime import date, datetime

# field names below shadow the type inside class bodies
Day = date


class Subject(str, Enum):
    FULLSTACK = "FullStack"
    SOFTWARE_TESTING = "Software Testing"
    TELECOMMUNICATION = "Telecommunication"
    DATA_SCIENCE = "Data Science"
    MACHINE_LEARNING = "Machine Learning"
    ARTIFICIAL_INTELLIGENCE = "Artificial Intelligence"
    COMPUTER_NETWORKS = "Computer Networks"
    DATABASE_MANAGEMENT = "Database Management"


SUBJECTS = [s.value for s in Subject]


class Role(str, Enum):
    STUDENT = "student"
    TEACHER = "teacher"


class AttendanceStatus(str, Enum):
    PRESENT = "present"
    ABSENT = "absent"


class Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True)


# Identities
class User(Document):
    name: str
    email: str
    password_hash: str
    role: Role
    usn: Optional[str] = Field(None, description="student only")
    section: Optional[str] = Field(None, description="student only")
    semester: Optional[int] = Field(None, ge=1, le=8, description="student only")
    subject: Optional[Subject] = Field(None, description="teacher only")


class RegisterPayload(Document):
    name: str
    email: str
    password: str = Field(..., min_length=6)
    role: Role = Role.STUDENT
    usn: Optional[str] = None
    section: Optional[str] = None
    semester: Optional[int] = Field(None, ge=1, le=8)
    subject: Optional[Subject] = None


class LoginPayload(BaseModel):
    email: str
    password: str


class ProfileUpdate(Document):
    name: Optional[str] = None
    email: Optional[str] = None
    subject: Optional[Subject] = None


class UserUpdate(Document):
    name: Optional[str] = None
    email: Optional[str] = None
    role: Optional[Role] = None


# Attendance
class AttendanceRecord(Document):
    student_id: str
    date: date
    status: AttendanceStatus
    subject: Optional[Subject] = None
    marked_by: str


class MarkAttendancePayload(Document):
    student_id: str
    date: date
    status: AttendanceStatus
    subject: Optional[Subject] = Field(None, description="defaults to the marking teacher's subject")


class BulkAttendanceEntry(Document):
    student_id: str
    status: AttendanceStatus


class BulkAttendancePayload(Document):
    date: date
    subject: Optional[Subject] = None
    records: List[BulkAttendanceEntry] = Field(..., min_length=1)


# Exams and assessments
class Exam(Document):
    name: str = Field(..., max_length=100)
    subject: Subject
    date: date
    semester: int = Field(..., ge=1, le=8)
    month: int = Field(..., ge=1, le=12)
    year: int
    attendance_threshold: float = Field(70, ge=0, le=100)


class ExamUpdate(Document):
    name: Optional[str] = Field(None, max_length=100)
    subject: Optional[Subject] = None
    date: Optional[Day] = None
    semester: Optional[int] = Field(None, ge=1, le=8)
    month: Optional[int] = Field(None, ge=1, le=12)
    year: Optional[int] = None
    attendance_threshold: Optional[float] = Field(None, ge=0, le=100)


class AssessmentPayload(Document):
    name: str
    date: date
    attendance_threshold: float = Field(70, ge=0, le=100)
    start_date: date = Field(..., description="first day of the attendance window")
    end_date: date = Field(..., description="last day of the attendance window (inclusive)")

    @model_validator(mode="after")
    def check_window(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class Assessment(AssessmentPayload):
    created_by: str


class EligibilityRecord(Document):
    student_id: str
    exam_id: str
    subject: Optional[Subject] = None
    is_eligible: bool
    attendance_percentage: float = Field(..., ge=0, le=100)
    total_classes: int = Field(..., ge=0)
    attended_classes: int = Field(..., ge=0)
    calculated_at: datetime = Field(default_factory=datetime.utcnow)
