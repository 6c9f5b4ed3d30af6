"""Utility helpers for test factories."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from cursia.core.plans import UserPlan
from cursia.core.security import compute_hmac_signature
from cursia.models.course.course_model import Course, CourseStatus
from cursia.models.course.module_model import Chunk, Module, Quiz, QuizQuestion
from cursia.models.user.subscription_model import Subscription, SubscriptionStatus
from cursia.models.user.user_model import User


def create_user(db, **kwargs) -> User:
    defaults = {
        "username": "user",
        "email": "user@example.com",
        "hashed_password": "x",
        "is_active": True,
        "is_superuser": False,
        "plan": UserPlan.FREE,
        "interests": [],
        "created_at": datetime.utcnow(),
    }
    defaults.update(kwargs)
    user = User(**defaults)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def create_course(
    db,
    user: User,
    *,
    modules: int = 2,
    modules_with_content: int | None = None,
    chunks_per_module: int = 2,
    questions_per_quiz: int = 2,
    status: CourseStatus = CourseStatus.COMPLETE,
    **kwargs,
) -> Course:
    """Build a course whose first ``modules_with_content`` modules have chunks and a quiz.

    Every question's correct answer is option ``0``.
    """

    filled = modules if modules_with_content is None else modules_with_content
    defaults = {
        "user_id": user.id,
        "user_prompt": "Quiero aprender Python desde cero",
        "user_level": "principiante",
        "user_interests": [],
        "title": "Python desde cero",
        "description": "Curso de prueba",
        "module_list": [f"Módulo {order}" for order in range(1, modules + 1)],
        "status": status,
        "total_modules": modules,
    }
    defaults.update(kwargs)
    course = Course(**defaults)

    for order in range(1, modules + 1):
        module = Module(module_order=order, title=f"Módulo {order}")
        if order <= filled:
            for chunk_order in range(1, chunks_per_module + 1):
                module.chunks.append(
                    Chunk(chunk_order=chunk_order, title=f"Lección {order}.{chunk_order}", content="Contenido")
                )
            if questions_per_quiz:
                quiz = Quiz(title=f"Quiz {order}")
                for question_order in range(1, questions_per_quiz + 1):
                    quiz.questions.append(
                        QuizQuestion(
                            question_order=question_order,
                            question=f"Pregunta {question_order}",
                            options=["A", "B", "C", "D"],
                            correct_answer=0,
                            explanation="Porque sí",
                        )
                    )
                module.quiz = quiz
        course.modules.append(module)

    db.add(course)
    db.commit()
    db.refresh(course)
    return course


def create_subscription(db, user: User, **kwargs) -> Subscription:
    defaults = {
        "user_id": user.id,
        "plan": UserPlan.APRENDIZ,
        "status": SubscriptionStatus.ACTIVE,
        "reference": f"cursia-aprendiz-{user.id}-1700000000000",
        "amount_in_cents": 2990000,
        "wompi_subscription_id": f"sub_{user.id}",
    }
    defaults.update(kwargs)
    subscription = Subscription(**defaults)
    db.add(subscription)
    db.commit()
    db.refresh(subscription)
    return subscription


def signed_event(payload: dict[str, Any], secret: str = "events-secret") -> tuple[bytes, str]:
    body = json.dumps(payload).encode("utf-8")
    return body, compute_hmac_signature(body, secret)


class FakeAsyncResult:
    def __init__(self, state: str = "PENDING", result: Any = None):
        self.state = state
        self.result = result


class FakeCelery:
    def __init__(self):
        self.sent: list[dict[str, Any]] = []
        self.states: dict[str, FakeAsyncResult] = {}

    def send_task(self, name, args=None, kwargs=None, task_id=None, priority=None, **options):
        self.sent.append({"name": name, "args": args, "kwargs": kwargs, "task_id": task_id, "priority": priority})
        self.states.setdefault(task_id, FakeAsyncResult())
        return FakeAsyncResult()

    def AsyncResult(self, task_id):
        return self.states.get(task_id, FakeAsyncResult())


class FakeRedis:
    def __init__(self):
        self.values: dict[str, str] = {}
        self.lists: dict[str, list[str]] = {}
        self.sets: dict[str, set[str]] = {}
        self.expiries: dict[str, int] = {}

    def set(self, key, value, ex=None):
        self.values[key] = value
        if ex is not None:
            self.expiries[key] = ex
        return True

    def get(self, key):
        return self.values.get(key)

    def rpush(self, key, *values):
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    def lrange(self, key, start, end):
        items = self.lists.get(key, [])
        return items[start:] if end == -1 else items[start : end + 1]

    def lrem(self, key, count, value):
        items = self.lists.get(key, [])
        removed = items.count(value)
        self.lists[key] = [item for item in items if item != value]
        return removed

    def incr(self, key):
        self.values[key] = str(int(self.values.get(key, 0)) + 1)
        return int(self.values[key])

    def expire(self, key, seconds):
        self.expiries[key] = seconds
        return True

    def ttl(self, key):
        if key not in self.values and key not in self.lists:
            return -2
        return self.expiries.get(key, -1)

    def sadd(self, key, *values):
        self.sets.setdefault(key, set()).update(values)
        return len(values)

    def smembers(self, key):
        return set(self.sets.get(key, set()))

    def srem(self, key, *values):
        self.sets.setdefault(key, set()).difference_update(values)
        return len(values)


class RecordingQueue:
    """Stand-in for ``QueueService`` that just records enqueued jobs."""

    def __init__(self, retry_after: int | None = None):
        self.jobs: list[tuple[int, str, int | None]] = []
        self.retry_after = retry_after

    def enqueue(self, course_id, action, *, module_order=None, priority=1):
        self.jobs.append((course_id, action, module_order))
        return f"job-{len(self.jobs)}"

    def get_course_generation_status(self, course_id):
        return [
            {"jobId": f"job-{index}", "action": action, "state": "waiting"}
            for index, (job_course, action, _) in enumerate(self.jobs, start=1)
            if job_course == course_id
        ]

    def check_rate_limit(self, user_id):
        return self.retry_after


class FailingQueue(RecordingQueue):
    """Queue whose broker is down: every enqueue raises."""

    def enqueue(self, course_id, action, *, module_order=None, priority=1):
        raise ConnectionError("Error 111 connecting to localhost:6379. Connection refused.")
