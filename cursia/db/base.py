"""Declara todos los modelos SQLAlchemy para que ``Base.metadata`` los conozca."""

from cursia.db.base_class import Base

# Usuarios y suscripciones
from cursia.models.user.user_model import User
from cursia.models.user.subscription_model import Subscription, SubscriptionStatus

# Cursos y contenido
from cursia.models.course.course_model import Course, CourseStatus, GenerationLog
from cursia.models.course.module_model import Chunk, Module, Quiz, QuizQuestion
from cursia.models.course.rating_model import CourseRating

# Progreso y certificados
from cursia.models.progress.user_progress_model import QuizAttempt, UserProgress
from cursia.models.progress.certificate_model import Certificate

__all__ = [
    "Base",
    "User",
    "Subscription",
    "SubscriptionStatus",
    "Course",
    "CourseStatus",
    "GenerationLog",
    "Module",
    "Chunk",
    "Quiz",
    "QuizQuestion",
    "CourseRating",
    "UserProgress",
    "QuizAttempt",
    "Certificate",
]
