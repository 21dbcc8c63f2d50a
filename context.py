from pymongo.database import Database

from config import Settings
from database import connect, ensure_indexes
from store import AssessmentStore, AttendanceStore, EligibilityStore, ExamStore, UserStore


class AppContext:
    """Settings plus the stores bound to one database handle."""

    def __init__(self, settings: Settings, db: Database):
        self.settings = settings
        self.db = db
        self.users = UserStore(db)
        self.attendance = AttendanceStore(db)
        self.exams = ExamStore(db)
        self.assessments = AssessmentStore(db)
        self.eligibility = EligibilityStore(db)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AppContext":
        db = connect(settings)
        ensure_indexes(db)
        return cls(settings, db)
