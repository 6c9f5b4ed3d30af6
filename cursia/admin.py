"""SQLAdmin back-office views."""

from __future__ import annotations

import json
from typing import Any

from markupsafe import Markup
from sqladmin import ModelView

from cursia.models.course.course_model import Course, GenerationLog
from cursia.models.course.rating_model import CourseRating
from cursia.models.progress.certificate_model import Certificate
from cursia.models.user.subscription_model import Subscription
from cursia.models.user.user_model import User


def _json_preview(value: Any, *, max_chars: int = 160) -> Markup:
    """Render JSON content as a trimmed <pre> block for the admin."""
    if value in (None, "", [], {}):
        return Markup("<span style='color:#9ca3af;'>-</span>")

    if not isinstance(value, (dict, list)):
        text = str(value)
    else:
        try:
            text = json.dumps(value, ensure_ascii=False, indent=2)
        except TypeError:
            text = str(value)

    if len(text) > max_chars:
        text = text[:max_chars] + "…"

    return Markup(
        "<pre style='max-width:520px; white-space:pre-wrap; margin:0; font-size:12px;'>{}</pre>"
    ).format(text)


class UserAdmin(ModelView, model=User):
    name = "Usuario"
    name_plural = "Usuarios"
    icon = "fa-solid fa-user"
    category = "Usuarios y pagos"
    column_list = [
        User.id,
        User.username,
        User.email,
        User.plan,
        User.is_active,
        User.is_superuser,
        User.created_at,
    ]
    column_searchable_list = [User.username, User.email]
    column_sortable_list = [User.created_at]
    column_default_sort = [(User.created_at, True)]
    column_details_exclude_list = [User.hashed_password]
    column_formatters = {
        User.plan: lambda m, _: m.plan.value if m.plan else "FREE",
    }
    form_excluded_columns = [
        "hashed_password",
        "courses",
        "subscriptions",
        "progress_entries",
        "certificates",
    ]
    can_export = True
    page_size = 50


class SubscriptionAdmin(ModelView, model=Subscription):
    name = "Suscripción"
    name_plural = "Suscripciones"
    icon = "fa-solid fa-credit-card"
    category = "Usuarios y pagos"
    column_list = [
        Subscription.id,
        Subscription.user,
        Subscription.plan,
        Subscription.status,
        Subscription.reference,
        Subscription.wompi_subscription_id,
        Subscription.next_payment_date,
        Subscription.cancelled_at,
    ]
    column_searchable_list = [Subscription.reference, Subscription.wompi_subscription_id]
    column_default_sort = [(Subscription.created_at, True)]
    can_create = False
    can_export = True


class CourseAdmin(ModelView, model=Course):
    name = "Curso"
    name_plural = "Cursos"
    icon = "fa-solid fa-book"
    category = "Contenidos"
    column_list = [
        Course.id,
        Course.title,
        Course.owner,
        Course.status,
        Course.total_modules,
        Course.is_public,
        Course.average_rating,
        Course.deleted_at,
        Course.created_at,
    ]
    column_searchable_list = [Course.title, Course.user_prompt]
    column_default_sort = [(Course.created_at, True)]
    column_formatters_detail = {
        Course.module_list: lambda m, _: _json_preview(m.module_list, max_chars=4000),
        Course.topics: lambda m, _: _json_preview(m.topics),
    }
    form_excluded_columns = ["modules", "ratings", "progress_entries", "certificates", "generation_logs"]
    can_create = False
    can_export = True


class GenerationLogAdmin(ModelView, model=GenerationLog):
    name = "Log de generación"
    name_plural = "Logs de generación"
    icon = "fa-solid fa-list"
    category = "Contenidos"
    column_list = [GenerationLog.id, GenerationLog.course, GenerationLog.action, GenerationLog.message, GenerationLog.created_at]
    column_default_sort = [(GenerationLog.created_at, True)]
    can_create = False
    can_edit = False


class CourseRatingAdmin(ModelView, model=CourseRating):
    name = "Calificación"
    name_plural = "Calificaciones"
    icon = "fa-solid fa-star"
    category = "Comunidad"
    column_list = [CourseRating.id, CourseRating.course, CourseRating.user, CourseRating.rating, CourseRating.created_at]
    column_default_sort = [(CourseRating.created_at, True)]
    can_create = False


class CertificateAdmin(ModelView, model=Certificate):
    name = "Certificado"
    name_plural = "Certificados"
    icon = "fa-solid fa-award"
    category = "Comunidad"
    column_list = [Certificate.id, Certificate.user, Certificate.course, Certificate.completed_at]
    column_searchable_list = [Certificate.id]
    column_default_sort = [(Certificate.created_at, True)]
    can_create = False
    can_edit = False


ADMIN_VIEWS = (
    UserAdmin,
    SubscriptionAdmin,
    CourseAdmin,
    GenerationLogAdmin,
    CourseRatingAdmin,
    CertificateAdmin,
)
