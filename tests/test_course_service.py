from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException

from cursia.api.v1.endpoints.course_router import create_course as create_course_endpoint
from cursia.api.v1.endpoints.course_router import start_course as start_course_endpoint
from cursia.core.errors import ExternalServiceError, ForbiddenError, NotFoundError, RateLimitError, ValidationError
from cursia.core.plans import UserPlan
from cursia.models.course.course_model import Course, CourseStatus, GenerationLog
from cursia.models.course.module_model import Chunk, Module
from cursia.models.progress.user_progress_model import UserProgress
from cursia.schemas.course_schema import CourseCreate
from cursia.services.course_service import CANCEL_DESCRIPTION, CourseService
from tests.utils import FailingQueue, RecordingQueue, create_course, create_user

PROMPT = "Quiero aprender estadística para análisis de datos"


@pytest.fixture()
def queue():
    return RecordingQueue()


def test_create_course_enqueues_metadata_job(db_session, queue):
    user = create_user(db_session)
    result = CourseService(db_session, user, queue).create_course(
        CourseCreate(prompt=PROMPT, level="Intermedio", interests=["finanzas"])
    )

    course = db_session.get(Course, result["id"])
    assert course.status == CourseStatus.GENERATING_METADATA
    assert course.user_level == "intermedio"
    assert course.user_interests == ["finanzas"]
    assert result["status"] == "GENERATING_METADATA"
    assert queue.jobs == [(course.id, "metadata", None)]


def test_free_plan_allows_one_course_per_month(db_session, queue):
    user = create_user(db_session)
    service = CourseService(db_session, user, queue)
    service.create_course(CourseCreate(prompt=PROMPT))

    with pytest.raises(ForbiddenError) as exc:
        service.create_course(CourseCreate(prompt=PROMPT))
    assert exc.value.details["upgradeRequired"] is True
    assert exc.value.details["currentPlan"] == "FREE"
    assert len(queue.jobs) == 1


def test_courses_from_previous_months_do_not_count(db_session, queue):
    user = create_user(db_session)
    create_course(db_session, user, created_at=datetime.now(timezone.utc) - timedelta(days=40))
    create_course(db_session, user, created_at=datetime.now(timezone.utc) - timedelta(days=70))

    CourseService(db_session, user, queue).create_course(CourseCreate(prompt=PROMPT))
    assert len(queue.jobs) == 1


def test_create_course_endpoint_maps_plan_limit_to_403(db_session, queue):
    user = create_user(db_session)
    create_course(db_session, user)

    with pytest.raises(HTTPException) as exc:
        create_course_endpoint(CourseCreate(prompt=PROMPT), db=db_session, current_user=user, queue=queue)
    assert exc.value.status_code == 403
    assert exc.value.detail["upgradeRequired"] is True


def test_list_courses_newest_first_without_deleted(db_session):
    user = create_user(db_session, plan=UserPlan.MAESTRO)
    older = create_course(db_session, user, title="Antiguo", created_at=datetime.now(timezone.utc) - timedelta(days=2))
    newer = create_course(db_session, user, title="Nuevo")
    trashed = create_course(db_session, user, title="Borrado", deleted_at=datetime.now(timezone.utc))

    service = CourseService(db_session, user)
    assert [course["id"] for course in service.list_courses()] == [newer.id, older.id]
    assert [course["id"] for course in service.list_trash()] == [trashed.id]
    assert service.list_courses()[0]["progress"] == 100


def test_course_detail_hides_correct_answers(db_session):
    user = create_user(db_session)
    course = create_course(db_session, user)

    detail = CourseService(db_session, user).get_course(course.id)
    question = detail["modules"][0]["quiz"]["questions"][0]
    assert question["options"] == ["A", "B", "C", "D"]
    assert "correctAnswer" not in question
    assert "explanation" not in question


def test_start_course_returns_202_while_first_module_generates(db_session, queue):
    user = create_user(db_session)
    course = create_course(db_session, user, modules_with_content=0, status=CourseStatus.GENERATING_MODULE_1)

    response = start_course_endpoint(course.id, db=db_session, current_user=user, queue=queue)
    assert response.status_code == 202
    assert db_session.query(UserProgress).count() == 0


def test_start_course_requires_metadata(db_session, queue):
    user = create_user(db_session)
    course = create_course(db_session, user, modules=0, title=None, status=CourseStatus.GENERATING_METADATA)

    with pytest.raises(ValidationError) as exc:
        CourseService(db_session, user, queue).start_course(course.id)
    assert exc.value.code == "Course not ready"


def test_start_ready_course_creates_progress_and_enqueues_remaining(db_session, queue):
    user = create_user(db_session)
    course = create_course(db_session, user, modules=3, modules_with_content=1, status=CourseStatus.READY)

    result = CourseService(db_session, user, queue).start_course(course.id)
    assert result["success"] is True
    assert result["modulesReady"] == 1
    assert result["totalModules"] == 3

    db_session.refresh(course)
    assert course.status == CourseStatus.GENERATING_REMAINING
    assert queue.jobs == [(course.id, "remaining", None)]
    assert db_session.query(UserProgress).count() == 1

    # Segundo inicio: no duplica progreso ni trabajos.
    CourseService(db_session, user, queue).start_course(course.id)
    assert db_session.query(UserProgress).count() == 1
    assert len(queue.jobs) == 1


def test_generate_remaining_requires_ready(db_session, queue):
    user = create_user(db_session)
    course = create_course(db_session, user, status=CourseStatus.COMPLETE)

    with pytest.raises(ValidationError):
        CourseService(db_session, user, queue).generate_remaining(course.id)

    course.status = CourseStatus.READY
    db_session.commit()
    result = CourseService(db_session, user, queue).generate_remaining(course.id)
    assert result["status"] == "GENERATING_REMAINING"
    assert queue.jobs == [(course.id, "remaining", None)]


@pytest.mark.parametrize("status", [CourseStatus.READY, CourseStatus.COMPLETE])
def test_cancel_rejects_finished_generation(db_session, status):
    user = create_user(db_session)
    course = create_course(db_session, user, status=status)
    with pytest.raises(ValidationError):
        CourseService(db_session, user).cancel_generation(course.id)


def test_cancel_marks_course_failed(db_session):
    user = create_user(db_session)
    course = create_course(db_session, user, modules_with_content=0, status=CourseStatus.GENERATING_MODULE_1)

    CourseService(db_session, user).cancel_generation(course.id)
    db_session.refresh(course)
    assert course.status == CourseStatus.FAILED
    assert course.description == CANCEL_DESCRIPTION


def test_trash_lifecycle(db_session):
    user = create_user(db_session)
    course = create_course(db_session, user)
    service = CourseService(db_session, user)

    with pytest.raises(NotFoundError) as exc:
        service.restore(course.id)
    assert exc.value.code == "Deleted course not found"

    service.soft_delete(course.id)
    with pytest.raises(NotFoundError):
        service.soft_delete(course.id)
    with pytest.raises(NotFoundError):
        service.get_course(course.id)

    service.restore(course.id)
    assert service.get_course(course.id)["id"] == course.id

    service.soft_delete(course.id)
    service.permanent_delete(course.id)
    assert db_session.query(Course).count() == 0
    assert db_session.query(Module).count() == 0
    assert db_session.query(Chunk).count() == 0


def test_regenerate_missing_modules_enqueues_one_job_per_module(db_session, queue):
    admin = create_user(db_session, username="admin", email="admin@example.com", is_superuser=True)
    owner = create_user(db_session)
    course = create_course(db_session, owner, modules=4, modules_with_content=2, status=CourseStatus.FAILED)

    result = CourseService(db_session, admin, queue).regenerate_missing_modules(course.id)
    assert result["modules"] == [3, 4]
    assert queue.jobs == [(course.id, "module", 3), (course.id, "module", 4)]
    db_session.refresh(course)
    assert course.status == CourseStatus.GENERATING_REMAINING

    complete = create_course(db_session, owner, title="Completo")
    assert CourseService(db_session, admin, queue).regenerate_missing_modules(complete.id)["modules"] == []


def test_create_course_rate_limited_before_persisting(db_session):
    user = create_user(db_session, plan=UserPlan.MAESTRO)
    queue = RecordingQueue(retry_after=42)

    with pytest.raises(RateLimitError) as exc:
        CourseService(db_session, user, queue).create_course(CourseCreate(prompt=PROMPT))
    assert exc.value.status_code == 429
    assert exc.value.details == {"retryAfter": 42}
    assert db_session.query(Course).count() == 0
    assert queue.jobs == []


def test_broker_down_on_create_does_not_consume_plan_quota(db_session):
    user = create_user(db_session)

    with pytest.raises(ExternalServiceError):
        CourseService(db_session, user, FailingQueue()).create_course(CourseCreate(prompt=PROMPT))
    assert db_session.query(Course).count() == 0

    # Con la cola de vuelta el usuario FREE aún puede crear su curso del mes.
    queue = RecordingQueue()
    result = CourseService(db_session, user, queue).create_course(CourseCreate(prompt=PROMPT))
    assert queue.jobs == [(result["id"], "metadata", None)]


def test_create_course_endpoint_maps_broker_failure_to_500(db_session):
    user = create_user(db_session)

    with pytest.raises(HTTPException) as exc:
        create_course_endpoint(CourseCreate(prompt=PROMPT), db=db_session, current_user=user, queue=FailingQueue())
    assert exc.value.status_code == 500
    assert exc.value.detail == "No se pudo encolar la generación del curso"


def test_broker_down_on_start_restores_ready_status(db_session):
    user = create_user(db_session)
    course = create_course(db_session, user, modules=3, modules_with_content=1, status=CourseStatus.READY)

    with pytest.raises(ExternalServiceError):
        CourseService(db_session, user, FailingQueue()).start_course(course.id)

    db_session.refresh(course)
    assert course.status == CourseStatus.READY
    log = db_session.query(GenerationLog).filter_by(course_id=course.id).one()
    assert log.action == "generation_failed"

    # El reintento con la cola disponible encola normalmente.
    queue = RecordingQueue()
    CourseService(db_session, user, queue).generate_remaining(course.id)
    assert queue.jobs == [(course.id, "remaining", None)]


def test_broker_down_on_regenerate_keeps_previous_status(db_session):
    admin = create_user(db_session, username="admin", email="admin@example.com", is_superuser=True)
    owner = create_user(db_session)
    course = create_course(db_session, owner, modules=3, modules_with_content=1, status=CourseStatus.FAILED)

    with pytest.raises(ExternalServiceError):
        CourseService(db_session, admin, FailingQueue()).regenerate_missing_modules(course.id)
    db_session.refresh(course)
    assert course.status == CourseStatus.FAILED
