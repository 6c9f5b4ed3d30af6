import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cursia.api.v1.dependencies import get_db, get_queue_service
from cursia.api.v1.endpoints import health_router
from cursia.core.plans import UserPlan
from cursia.models.course.course_model import CourseStatus
from cursia.core.security import create_access_token, get_password_hash
from cursia.db.base_class import Base
from cursia.main import app
from cursia.models.progress.certificate_model import Certificate
from cursia.models.progress.user_progress_model import UserProgress
from cursia.models.user.user_model import User
from tests.conftest import TABLES
from tests.utils import FailingQueue, RecordingQueue, create_course, create_subscription, create_user, signed_event


@pytest.fixture()
def api_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(bind=engine, tables=TABLES)
    session = sessionmaker(bind=engine, future=True)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine, tables=TABLES)
        engine.dispose()


@pytest.fixture()
def queue():
    return RecordingQueue()


@pytest.fixture()
def client(api_session, queue):
    def _override_db():
        yield api_session

    app.dependency_overrides[get_db] = _override_db
    app.dependency_overrides[get_queue_service] = lambda: queue
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _auth(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(subject=user.id)}"}


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


def test_register_then_login_with_email(client, api_session):
    payload = {"username": "nuevo_user", "email": "nuevo@example.com", "password": "secreto123", "name": "Nuevo"}

    response = client.post("/api/auth/register", json=payload)
    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["user"]["username"] == "nuevo_user"
    assert "hashedPassword" not in body["user"]

    duplicate = client.post("/api/auth/register", json=payload)
    assert duplicate.status_code == 400

    login = client.post("/api/auth/login", data={"username": "nuevo@example.com", "password": "secreto123"})
    assert login.status_code == 200
    assert login.json()["token_type"] == "bearer"
    assert "access_token" in login.cookies

    wrong = client.post("/api/auth/login", data={"username": "nuevo_user", "password": "otra-clave"})
    assert wrong.status_code == 401


def test_invalid_input_returns_field_errors(client, api_session):
    response = client.post("/api/auth/register", json={"username": "x", "email": "no-es-email", "password": "123"})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Invalid input"
    assert {"username", "email", "password"} <= set(body["fieldErrors"])


def test_protected_routes_require_token(client):
    assert client.get("/api/courses").status_code == 401
    assert client.get("/api/user/me", headers={"Authorization": "Bearer not-a-jwt"}).status_code == 401


def test_token_accepted_from_cookie(client, api_session):
    user = create_user(api_session, hashed_password=get_password_hash("secreto123"))
    token = create_access_token(subject=user.id)

    response = client.get("/api/user/me", headers={"Cookie": f"access_token={token}"})

    assert response.status_code == 200
    assert response.json()["username"] == "user"


# ---------------------------------------------------------------------------
# Courses
# ---------------------------------------------------------------------------


def test_create_course_enqueues_metadata_job(client, api_session, queue):
    user = create_user(api_session, plan=UserPlan.APRENDIZ)

    response = client.post(
        "/api/courses",
        json={"prompt": "Quiero aprender estadística básica", "level": "principiante"},
        headers=_auth(user),
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "GENERATING_METADATA"
    assert body["remainingCourses"] == 4
    assert queue.jobs == [(body["id"], "metadata", None)]


def test_course_limit_returns_upgrade_hint(client, api_session):
    user = create_user(api_session)
    create_course(api_session, user)

    response = client.post("/api/courses", json={"prompt": "Otro curso más sobre Python"}, headers=_auth(user))

    assert response.status_code == 403
    detail = response.json()["detail"]
    assert detail["upgradeRequired"] is True
    assert detail["currentPlan"] == "FREE"


def test_start_course_while_first_module_is_generating(client, api_session):
    user = create_user(api_session)
    course = create_course(api_session, user, modules_with_content=0, status=CourseStatus.GENERATING_MODULE_1)

    response = client.post(f"/api/courses/{course.id}/start", headers=_auth(user))

    assert response.status_code == 202
    assert response.json()["status"] == "generating"


def test_course_detail_hides_answers(client, api_session):
    user = create_user(api_session)
    course = create_course(api_session, user)

    response = client.get(f"/api/courses/{course.id}", headers=_auth(user))

    assert response.status_code == 200
    question = response.json()["modules"][0]["quiz"]["questions"][0]
    assert "correctAnswer" not in question
    assert "explanation" not in question


# ---------------------------------------------------------------------------
# Webhook and cron
# ---------------------------------------------------------------------------


def test_webhook_rejects_bad_signature_with_500(client, api_session):
    user = create_user(api_session, plan=UserPlan.APRENDIZ)
    subscription = create_subscription(api_session, user)
    body, _ = signed_event({"event": "subscription.cancelled", "data": {"subscription": {"id": subscription.wompi_subscription_id}}})

    response = client.post("/api/webhooks/wompi", content=body, headers={"x-wompi-signature": "0" * 64})

    assert response.status_code == 500
    assert response.json() == {"error": "Webhook processing failed"}
    api_session.refresh(user)
    assert user.plan == UserPlan.APRENDIZ


def test_webhook_applies_signed_event(client, api_session):
    user = create_user(api_session, plan=UserPlan.APRENDIZ)
    subscription = create_subscription(api_session, user)
    body, signature = signed_event(
        {"event": "subscription.cancelled", "data": {"subscription": {"id": subscription.wompi_subscription_id}}}
    )

    response = client.post("/api/webhooks/wompi", content=body, headers={"x-wompi-signature": signature})

    assert response.status_code == 200
    assert response.json() == {"received": True, "handled": True}
    api_session.refresh(user)
    assert user.plan == UserPlan.FREE


@pytest.mark.parametrize("header", [None, "Bearer wrong", "cron-secret", "Basic cron-secret"])
def test_cron_requires_secret(client, header):
    headers = {"Authorization": header} if header else {}
    assert client.post("/api/cron/expire-subscriptions", headers=headers).status_code == 401


def test_cron_runs_sweep(client):
    for method in (client.get, client.post):
        response = method("/api/cron/expire-subscriptions", headers={"Authorization": "Bearer cron-secret"})
        assert response.status_code == 200
        assert response.json()["processed"] == 0


# ---------------------------------------------------------------------------
# Health and certificates
# ---------------------------------------------------------------------------


def test_health_reports_database_state(client, monkeypatch):
    monkeypatch.setattr(health_router, "_ping_database", lambda: None)
    healthy = client.get("/api/health")
    assert healthy.status_code == 200
    assert healthy.json()["status"] == "healthy"
    assert healthy.json()["services"]["wompi"] == "configured"

    def _down():
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    monkeypatch.setattr(health_router, "_ping_database", _down)
    unhealthy = client.get("/api/health")
    assert unhealthy.status_code == 503
    assert unhealthy.json()["status"] == "unhealthy"


def test_certificate_verification_is_public(client, api_session):
    user = create_user(api_session, full_name="Laura Gómez")
    course = create_course(api_session, user)
    progress = UserProgress(user_id=user.id, course_id=course.id, completed_at=course.created_at)
    api_session.add(progress)
    api_session.commit()

    issued = client.post("/api/certificates/generate", json={"courseId": course.id}, headers=_auth(user))
    assert issued.status_code == 200
    certificate_id = issued.json()["id"]
    assert issued.json()["verificationUrl"].endswith(f"/verify-certificate/{certificate_id}")
    assert api_session.query(Certificate).count() == 1

    verified = client.get(f"/api/certificates/{certificate_id}/verify")
    assert verified.status_code == 200
    assert verified.json()["valid"] is True
    assert verified.json()["certificate"]["userName"] == "Laura Gómez"

    missing = client.get("/api/certificates/does-not-exist/verify")
    assert missing.status_code == 404
    assert missing.json() == {"valid": False, "error": "Certificate not found"}


# ---------------------------------------------------------------------------
# Queue failures and rate limit
# ---------------------------------------------------------------------------


def test_broker_down_does_not_lock_free_user_out(client, api_session, queue):
    user = create_user(api_session)
    payload = {"prompt": "Quiero aprender estadística básica"}

    app.dependency_overrides[get_queue_service] = lambda: FailingQueue()
    failed = client.post("/api/courses", json=payload, headers=_auth(user))
    assert failed.status_code == 500
    assert failed.json()["detail"] == "No se pudo encolar la generación del curso"
    assert client.get("/api/courses", headers=_auth(user)).json() == []

    app.dependency_overrides[get_queue_service] = lambda: queue
    retried = client.post("/api/courses", json=payload, headers=_auth(user))
    assert retried.status_code == 201
    assert queue.jobs == [(retried.json()["id"], "metadata", None)]


def test_course_creation_rate_limit_returns_429(client, api_session):
    user = create_user(api_session, plan=UserPlan.MAESTRO)
    app.dependency_overrides[get_queue_service] = lambda: RecordingQueue(retry_after=30)

    response = client.post("/api/courses", json={"prompt": "Quiero aprender estadística básica"}, headers=_auth(user))

    assert response.status_code == 429
    assert response.json()["detail"]["retryAfter"] == 30


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------


def test_users_cannot_change_their_own_plan(client, api_session):
    user = create_user(api_session)

    assert client.post("/api/user/plan", json={"plan": "MAESTRO"}, headers=_auth(user)).status_code == 405
    forbidden = client.post(f"/api/admin/users/{user.id}/plan", json={"plan": "MAESTRO"}, headers=_auth(user))
    assert forbidden.status_code == 403

    api_session.refresh(user)
    assert user.plan == UserPlan.FREE


def test_superuser_changes_plan_of_another_user(client, api_session):
    admin = create_user(api_session, username="admin", email="admin@example.com", is_superuser=True)
    user = create_user(api_session)

    response = client.post(f"/api/admin/users/{user.id}/plan", json={"plan": "experto"}, headers=_auth(admin))
    assert response.status_code == 200
    assert response.json() == {"success": True, "plan": "EXPERTO", "planName": "Experto"}

    api_session.refresh(user)
    assert user.plan == UserPlan.EXPERTO

    missing = client.post("/api/admin/users/999/plan", json={"plan": "EXPERTO"}, headers=_auth(admin))
    assert missing.status_code == 404


def test_profile_read_and_update(client, api_session):
    user = create_user(api_session, full_name="Ana")
    create_user(api_session, username="otra", email="otra@example.com")

    read = client.get("/api/user/profile", headers=_auth(user))
    assert read.status_code == 200
    assert read.json()["user"]["name"] == "Ana"

    taken = client.put("/api/user/profile", json={"email": "otra@example.com"}, headers=_auth(user))
    assert taken.status_code == 400
    assert taken.json()["detail"] == "Este email ya está en uso por otro usuario"

    too_short = client.put("/api/user/profile", json={"name": "A"}, headers=_auth(user))
    assert too_short.status_code == 400

    updated = client.put("/api/user/profile", json={"name": "Ana María"}, headers=_auth(user))
    assert updated.status_code == 200
    assert updated.json()["user"]["name"] == "Ana María"


def test_public_profile_by_username(client, api_session):
    viewer = create_user(api_session)
    author = create_user(api_session, username="maestra", email="maestra@example.com", plan=UserPlan.MAESTRO)
    create_course(api_session, author, is_public=True, total_completions=3)

    response = client.get("/api/users/maestra", headers=_auth(viewer))
    assert response.status_code == 200
    assert response.json()["metrics"] == {"publicCourses": 1, "totalCompletions": 3, "totalRatings": 0}

    assert client.get("/api/users/maestra").status_code == 401
    assert client.get("/api/users/nadie", headers=_auth(viewer)).status_code == 404
