import logging
from contextlib import asynccontextmanager
from datetime import datetime, date
from typing import Dict, Any, List, Optional

from fastapi import FastAPI, HTTPException, Depends, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import (
    create_access_token, ensure_self_or_teacher, get_context, get_current_user,
    hash_password, require_roles, verify_password,
)
from config import Settings
from context import AppContext
from eligibility import (
    assessment_eligibility, calculate_all_months, calculate_exam_eligibility,
    compute_eligibility, summarize, validate_subject, validate_threshold,
)
from errors import AttendanceError, NotFoundError
from schemas import (
    SUBJECTS, Assessment, AssessmentPayload, BulkAttendancePayload, Exam, ExamUpdate,
    LoginPayload, MarkAttendancePayload, ProfileUpdate, RegisterPayload, Role, Subject,
    User, UserUpdate,
)
from store import Created

logger = logging.getLogger(__name__)

settings = Settings.from_env()


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "context", None) is None:
        app.state.context = AppContext.from_settings(settings)
    yield


app = FastAPI(title="Attendance & Exam Eligibility API", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

teacher_only = require_roles(Role.TEACHER.value)


def serialize_doc(doc: Dict[str, Any]) -> Dict[str, Any]:
    if not doc:
        return doc
    d = {**doc}
    if "_id" in d:
        d["id"] = str(d.pop("_id"))
    d.pop("password_hash", None)
    # Convert datetime/date objects to ISO
    for k, v in list(d.items()):
        if hasattr(v, 'isoformat'):
            d[k] = v.isoformat()
    return d


def serialize_list(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [serialize_doc(d) for d in docs]


def user_summary(user: Dict[str, Any]) -> Dict[str, Any]:
    out = {"id": str(user["_id"]), "name": user.get("name"), "email": user.get("email"), "role": user.get("role")}
    if user.get("role") == Role.STUDENT.value:
        out.update(usn=user.get("usn"), section=user.get("section"), semester=user.get("semester"))
    else:
        out["subject"] = user.get("subject")
    return out


def build_user(payload: RegisterPayload) -> User:
    fields = {"name": payload.name, "email": payload.email, "role": payload.role,
              "password_hash": hash_password(payload.password)}
    if payload.role == Role.STUDENT.value:
        fields.update(usn=payload.usn, section=payload.section, semester=payload.semester)
    else:
        fields["subject"] = payload.subject
    return User(**fields)


# -------------------- Errors & request logging -------------------- #

@app.exception_handler(AttendanceError)
async def attendance_error_handler(request: Request, exc: AttendanceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = datetime.utcnow()
    response = await call_next(request)
    elapsed = (datetime.utcnow() - start).total_seconds() * 1000
    logger.info(f"{request.method} {request.url.path} {response.status_code} {elapsed:.1f}ms")
    return response


# -------------------- Meta endpoints -------------------- #

@app.get("/")
def read_root():
    return {"message": "Attendance & Exam Eligibility Backend is running"}


@app.get("/health")
def health(ctx=Depends(get_context)):
    response = {"backend": "running", "database": "unavailable", "database_name": None}
    try:
        ctx.db.command("ping")
        response["database"] = "connected"
        response["database_name"] = ctx.db.name
    except Exception as e:
        logger.warning(f"Database ping failed: {e}")
        response["database"] = f"error: {str(e)[:80]}"
    return response


@app.get("/meta/subjects")
def list_subjects():
    return SUBJECTS


# -------------------- Auth endpoints -------------------- #

def token_response(user: Dict[str, Any], ctx: AppContext) -> Dict[str, Any]:
    token = create_access_token({"sub": str(user["_id"]), "role": user.get("role")}, ctx.settings)
    return {"access_token": token, "token_type": "bearer", "user": user_summary(user)}


@app.post("/auth/register", status_code=201)
def register_user(payload: RegisterPayload, ctx=Depends(get_context)):
    if ctx.users.by_email(payload.email):
        raise HTTPException(status_code=400, detail="User already exists")
    user = ctx.users.create(build_user(payload))
    logger.info(f"Registered {user['role']} {user['email']}")
    return token_response(user, ctx)


@app.post("/auth/login")
def login(payload: LoginPayload, ctx=Depends(get_context)):
    user = ctx.users.by_email(payload.email)
    if not user or not verify_password(payload.password, user.get("password_hash", "")):
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return token_response(user, ctx)


@app.get("/auth/me")
def me(user=Depends(get_current_user)):
    return user_summary(user)


@app.put("/auth/updateprofile")
def update_profile(payload: ProfileUpdate, user=Depends(get_current_user), ctx=Depends(get_context)):
    fields = {"name": payload.name, "email": payload.email}
    if user.get("role") == Role.TEACHER.value:
        fields["subject"] = payload.subject
    updated = ctx.users.update(str(user["_id"]), fields)
    return user_summary(updated)


# -------------------- User endpoints -------------------- #

@app.get("/users")
def list_students(usn: Optional[str] = None, user=Depends(teacher_only), ctx=Depends(get_context)):
    return serialize_list(ctx.users.students(usn=usn))


@app.get("/users/usn/{usn}")
def get_student_by_usn(usn: str, user=Depends(get_current_user), ctx=Depends(get_context)):
    student = ctx.users.student_by_usn(usn)
    if not student:
        raise NotFoundError("Student not found")
    ensure_self_or_teacher(user, str(student["_id"]))
    return serialize_doc(student)


@app.get("/users/{user_id}")
def get_user(user_id: str, user=Depends(teacher_only), ctx=Depends(get_context)):
    return serialize_doc(ctx.users.get(user_id))


@app.post("/users", status_code=201)
def create_user(payload: RegisterPayload, user=Depends(teacher_only), ctx=Depends(get_context)):
    if ctx.users.by_email(payload.email):
        raise HTTPException(status_code=400, detail="User already exists")
    return serialize_doc(ctx.users.create(build_user(payload)))


@app.put("/users/{user_id}")
def update_user(user_id: str, payload: UserUpdate, user=Depends(teacher_only), ctx=Depends(get_context)):
    return serialize_doc(ctx.users.update(user_id, payload.model_dump()))


@app.delete("/users/{user_id}")
def delete_user(user_id: str, user=Depends(teacher_only), ctx=Depends(get_context)):
    ctx.users.delete(user_id)
    return {}


# -------------------- Attendance endpoints -------------------- #

@app.get("/attendance")
def list_attendance(
    day: Optional[date] = Query(None, alias="date"),
    student: Optional[str] = None,
    user=Depends(teacher_only),
    ctx=Depends(get_context),
):
    docs = ctx.attendance.list(day=day, student_id=student)
    return {"count": len(docs), "data": serialize_list(docs)}


@app.get("/attendance/student/{student_id}")
def student_attendance(student_id: str, user=Depends(get_current_user), ctx=Depends(get_context)):
    ensure_self_or_teacher(user, student_id)
    docs = ctx.attendance.list(student_id=student_id)
    return {"count": len(docs), "data": serialize_list(docs)}


@app.get("/attendance/stats/{student_id}")
def attendance_stats(
    student_id: str,
    subject: Optional[Subject] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    threshold: Optional[float] = None,
    user=Depends(get_current_user),
    ctx=Depends(get_context),
):
    ensure_self_or_teacher(user, student_id)
    student_id = str(ctx.users.get_student(student_id)["_id"])
    threshold = validate_threshold(ctx.settings.attendance_threshold if threshold is None else threshold)
    if start is not None and end is not None:
        stats = compute_eligibility(ctx.attendance, student_id, start, end, threshold, subject)
    else:
        records = ctx.attendance.find(student_id, start=start, end=end, subject=validate_subject(subject))
        stats = summarize(records, threshold)

    eligibility = []
    for assessment in ctx.assessments.upcoming(datetime.utcnow()):
        a_stats = assessment_eligibility(ctx.attendance, student_id, assessment)
        eligibility.append({
            "assessment": {"id": str(assessment["_id"]), "name": assessment["name"],
                           "date": assessment["date"].isoformat()},
            "attendance_percentage": a_stats.attendance_percentage,
            "is_eligible": a_stats.is_eligible,
            "threshold": assessment["attendance_threshold"],
        })

    return {
        **stats.as_dict(),
        "absent_classes": stats.total_classes - stats.attended_classes,
        "threshold": threshold,
        "eligibility": eligibility,
    }


@app.post("/attendance", status_code=201)
def mark_attendance(payload: MarkAttendancePayload, response: Response, user=Depends(teacher_only), ctx=Depends(get_context)):
    ctx.users.get_student(payload.student_id)
    subject = validate_subject(payload.subject or user.get("subject"))
    result = ctx.attendance.mark(payload.student_id, payload.date, payload.status, str(user["_id"]), subject)
    if not isinstance(result, Created):
        response.status_code = 200
    return serialize_doc(result.document)


@app.post("/attendance/bulk")
def mark_bulk_attendance(payload: BulkAttendancePayload, user=Depends(teacher_only), ctx=Depends(get_context)):
    subject = validate_subject(payload.subject or user.get("subject"))
    results = []
    for entry in payload.records:
        try:
            ctx.users.get_student(entry.student_id)
            result = ctx.attendance.mark(entry.student_id, payload.date, entry.status, str(user["_id"]), subject)
        except AttendanceError as exc:
            logger.warning(f"Bulk attendance failed for student {entry.student_id}: {exc.message}")
            results.append({"student_id": entry.student_id, "success": False, "error": exc.message})
            continue
        results.append({
            "student_id": entry.student_id,
            "success": True,
            "created": isinstance(result, Created),
            "data": serialize_doc(result.document),
        })
    return {"count": len(results), "data": results}


@app.post("/attendance/assessment", status_code=201)
def create_assessment(payload: AssessmentPayload, user=Depends(teacher_only), ctx=Depends(get_context)):
    assessment = Assessment(**payload.model_dump(), created_by=str(user["_id"]))
    return serialize_doc(ctx.assessments.create(assessment))


@app.get("/attendance/assessment")
def list_assessments(user=Depends(get_current_user), ctx=Depends(get_context)):
    docs = ctx.assessments.list()
    return {"count": len(docs), "data": serialize_list(docs)}


# -------------------- Exams & eligibility -------------------- #

@app.get("/exams/eligibility/student/{student_id}")
def student_eligibility(student_id: str, user=Depends(get_current_user), ctx=Depends(get_context)):
    ensure_self_or_teacher(user, student_id)
    data = []
    for record in ctx.eligibility.for_student(student_id):
        row = serialize_doc(record)
        try:
            row["exam"] = serialize_doc(ctx.exams.get(record["exam_id"]))
        except NotFoundError:
            row["exam"] = None
        data.append(row)
    return {"count": len(data), "data": data}


@app.get("/exams")
def list_exams(
    subject: Optional[Subject] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
    user=Depends(get_current_user),
    ctx=Depends(get_context),
):
    docs = ctx.exams.list(subject=validate_subject(subject), month=month, year=year)
    return {"count": len(docs), "data": serialize_list(docs)}


@app.get("/exams/{exam_id}")
def get_exam(exam_id: str, user=Depends(get_current_user), ctx=Depends(get_context)):
    return serialize_doc(ctx.exams.get(exam_id))


@app.post("/exams", status_code=201)
def create_exam(exam: Exam, user=Depends(teacher_only), ctx=Depends(get_context)):
    return serialize_doc(ctx.exams.create(exam))


@app.put("/exams/{exam_id}")
def update_exam(exam_id: str, payload: ExamUpdate, user=Depends(teacher_only), ctx=Depends(get_context)):
    return serialize_doc(ctx.exams.update(exam_id, payload.model_dump(exclude_unset=True)))


@app.delete("/exams/{exam_id}")
def delete_exam(exam_id: str, user=Depends(teacher_only), ctx=Depends(get_context)):
    removed = ctx.exams.delete(exam_id)
    logger.info(f"Deleted exam {exam_id} and {removed} eligibility record(s)")
    return {"deleted": True, "eligibility_removed": removed}


@app.get("/exams/{exam_id}/eligibility")
def exam_eligibility(exam_id: str, user=Depends(teacher_only), ctx=Depends(get_context)):
    data = []
    for record in ctx.eligibility.for_exam(exam_id):
        row = serialize_doc(record)
        try:
            row["student"] = user_summary(ctx.users.get(record["student_id"]))
        except NotFoundError:
            row["student"] = None
        data.append(row)
    return {"count": len(data), "data": data}


@app.post("/exams/{exam_id}/calculate-eligibility")
def calculate_eligibility(exam_id: str, user=Depends(teacher_only), ctx=Depends(get_context)):
    return calculate_exam_eligibility(ctx, exam_id).as_dict()


# -------------------- Maintenance -------------------- #

@app.post("/dev/calculate-all-eligibility")
def calculate_all_eligibility(user=Depends(teacher_only), ctx=Depends(get_context)):
    return calculate_all_months(ctx).as_dict()


# -------------------- Run -------------------- #

if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
