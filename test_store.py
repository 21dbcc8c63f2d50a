from datetime import date, datetime

import pytest

from errors import ConflictError, NotFoundError
from schemas import Assessment, EligibilityRecord, User
from store import Created, Existing, Updated


class TestMarkAttendance:

    def test_first_mark_creates_record_at_midnight(self, ctx, make_student, teacher):
        sid = make_student()
        result = ctx.attendance.mark(sid, date(2024, 1, 15), "present", teacher, "Data Science")

        assert isinstance(result, Created)
        assert result.document["date"] == datetime(2024, 1, 15)
        assert result.document["marked_by"] == teacher

    def test_second_mark_overwrites(self, ctx, make_student, teacher):
        sid = make_student()
        ctx.attendance.mark(sid, date(2024, 1, 15), "present", teacher, "Data Science")
        result = ctx.attendance.mark(sid, datetime(2024, 1, 15, 14, 30), "absent", "other-teacher", "Data Science")

        assert isinstance(result, Updated)
        assert result.document["status"] == "absent"
        assert result.document["marked_by"] == "other-teacher"
        assert ctx.db["attendancerecord"].count_documents({}) == 1

    def test_subjects_are_separate_keys(self, ctx, make_student, teacher):
        sid = make_student()
        ctx.attendance.mark(sid, date(2024, 1, 15), "present", teacher, "Data Science")
        result = ctx.attendance.mark(sid, date(2024, 1, 15), "absent", teacher, "Computer Networks")

        assert isinstance(result, Created)
        assert ctx.db["attendancerecord"].count_documents({}) == 2

    def test_subjectless_records_are_unique_per_day(self, ctx, make_student, teacher):
        sid = make_student()
        ctx.attendance.mark(sid, date(2024, 1, 15), "present", teacher)
        result = ctx.attendance.mark(sid, date(2024, 1, 15), "absent", teacher)

        assert isinstance(result, Updated)
        assert ctx.db["attendancerecord"].count_documents({}) == 1

    def test_lost_insert_race_falls_back_to_update(self, ctx, make_student, teacher, monkeypatch):
        sid = make_student()
        ctx.attendance.mark(sid, date(2024, 1, 15), "present", teacher, "Data Science")
        collection = ctx.attendance.records
        real_find_one = collection.find_one
        calls = []

        def stale_find_one(*args, **kwargs):
            # the first lookup misses the concurrent writer's record
            calls.append(args)
            if len(calls) == 1:
                return None
            return real_find_one(*args, **kwargs)

        monkeypatch.setattr(collection, "find_one", stale_find_one)
        result = ctx.attendance.mark(sid, date(2024, 1, 15), "absent", teacher, "Data Science")

        assert isinstance(result, Updated)
        assert result.document["status"] == "absent"
        assert collection.count_documents({}) == 1

    def test_unresolvable_duplicate_is_a_conflict(self, ctx, make_student, teacher, monkeypatch):
        sid = make_student()
        ctx.attendance.mark(sid, date(2024, 1, 15), "present", teacher, "Data Science")
        collection = ctx.attendance.records
        monkeypatch.setattr(collection, "find_one", lambda *a, **kw: None)

        with pytest.raises(ConflictError):
            ctx.attendance.mark(sid, date(2024, 1, 15), "absent", teacher, "Data Science")


class TestQueries:

    def test_month_years(self, ctx, make_student, mark):
        sid = make_student()
        mark(sid, "2024-02-10", "present")
        mark(sid, "2024-01-10", "present")
        mark(sid, "2024-01-11", "absent")
        mark(sid, "2023-12-01", "present")

        assert ctx.attendance.month_years() == [(2023, 12), (2024, 1), (2024, 2)]

    def test_list_by_day(self, ctx, make_student, mark):
        a, b = make_student(), make_student()
        mark(a, "2024-01-10", "present")
        mark(b, "2024-01-10", "absent")
        mark(a, "2024-01-11", "present")

        assert len(ctx.attendance.list(day=date(2024, 1, 10))) == 2
        assert len(ctx.attendance.list(student_id=a)) == 2


class TestExams:

    def test_get_or_create_reuses_existing(self, ctx):
        first = ctx.exams.get_or_create("Data Science", 5, 2024, 70, date(2024, 5, 31))
        second = ctx.exams.get_or_create("Data Science", 5, 2024, 90, date(2024, 5, 31))

        assert isinstance(first, Created)
        assert isinstance(second, Existing)
        assert second.document["_id"] == first.document["_id"]
        assert first.document["name"] == "Data Science Exam - 5/2024"
        assert first.document["date"] == datetime(2024, 5, 31)
        assert second.document["attendance_threshold"] == 70

    def test_missing_exam(self, ctx):
        with pytest.raises(NotFoundError):
            ctx.exams.get("0123456789ab0123456789ab")


class TestUsers:

    def test_duplicate_usn_is_rejected(self, ctx, make_student):
        make_student()
        existing = ctx.db["user"].find_one({})
        with pytest.raises(ConflictError):
            ctx.users.create(User(
                name="Copy", email="copy@college.edu", password_hash="x",
                role="student", usn=existing["usn"],
            ))

    def test_duplicate_email_is_rejected(self, ctx, teacher):
        with pytest.raises(ConflictError):
            ctx.users.create(User(name="Again", email="teacher@college.edu", password_hash="x", role="teacher"))

    def test_get_student_rejects_teachers(self, ctx, teacher):
        with pytest.raises(NotFoundError):
            ctx.users.get_student(teacher)


class TestIdNormalisation:

    def test_mark_and_find_share_one_key_across_id_case(self, ctx, make_student, teacher):
        sid = make_student()
        ctx.attendance.mark(sid.upper(), date(2024, 1, 15), "present", teacher, "Data Science")
        result = ctx.attendance.mark(sid, date(2024, 1, 15), "absent", teacher, "Data Science")

        assert isinstance(result, Updated)
        assert result.document["student_id"] == sid
        assert len(ctx.attendance.find(sid.upper())) == 1

    def test_exam_delete_cascades_by_stored_id(self, ctx, make_student, mark):
        sid = make_student()
        mark(sid, "2024-05-06", "present")
        exam = ctx.exams.get_or_create("Data Science", 5, 2024, 70, date(2024, 5, 31)).document
        exam_id = str(exam["_id"])
        ctx.eligibility.upsert(EligibilityRecord(
            student_id=sid, exam_id=exam_id.upper(), subject="Data Science",
            is_eligible=True, attendance_percentage=100, total_classes=1, attended_classes=1,
        ))
        assert len(ctx.eligibility.for_exam(exam_id)) == 1

        assert ctx.exams.delete(exam_id.upper()) == 1
        assert ctx.eligibility.for_exam(exam_id) == []

    def test_delete_for_exam_leaves_other_exams(self, ctx, make_student):
        sid = make_student()
        first = ctx.exams.get_or_create("Data Science", 5, 2024, 70, date(2024, 5, 31)).document
        second = ctx.exams.get_or_create("Data Science", 6, 2024, 70, date(2024, 6, 30)).document
        for exam in (first, second):
            ctx.eligibility.upsert(EligibilityRecord(
                student_id=sid, exam_id=str(exam["_id"]), subject="Data Science",
                is_eligible=False, attendance_percentage=0, total_classes=0, attended_classes=0,
            ))

        assert ctx.eligibility.delete_for_exam(str(first["_id"])) == 1
        assert len(ctx.eligibility.for_student(sid)) == 1


class TestUpcomingAssessments:

    def test_earlier_today_is_not_upcoming(self, ctx, teacher):
        today = date(2024, 3, 10)
        ctx.assessments.create(Assessment(
            name="Today", date=today, start_date=date(2024, 3, 1), end_date=today, created_by=teacher,
        ))
        ctx.assessments.create(Assessment(
            name="Tomorrow", date=date(2024, 3, 11), start_date=date(2024, 3, 1), end_date=today,
            created_by=teacher,
        ))

        names = [a["name"] for a in ctx.assessments.upcoming(datetime(2024, 3, 10, 9, 30))]
        assert names == ["Tomorrow"]
        assert len(ctx.assessments.upcoming(datetime(2024, 3, 10))) == 2
