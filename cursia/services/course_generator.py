"""Course content generation: LLM prompts plus persistence of the results.

``CourseContentGenerator`` is the contract the worker depends on: given a
course (and a module number) it returns validated structures or raises
``GenerationError``. ``CourseBuilder`` writes those structures to the
database and drives the course status forward.
"""

from __future__ import annotations

import json
import logging
from typing import Callable, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from cursia.core import ai_service
from cursia.core.errors import GenerationError
from cursia.models.course.course_model import Course, CourseStatus, GenerationLog
from cursia.models.course.module_model import Chunk, Module, Quiz, QuizQuestion
from cursia.schemas.course_schema import CourseMetadata, ModuleContent
from cursia.services import youtube_service

logger = logging.getLogger(__name__)

VIDEO_CHUNK_ORDER = 2

METADATA_SYSTEM_PROMPT = """Eres un diseñador instruccional experto. Diseñas cursos en español,
claros y progresivos. Responde SOLO con un objeto JSON con las claves:
title, description, prerequisites (lista), moduleList (lista de 3 a 6 títulos de módulos),
topics (lista), introduction."""

MODULE_SYSTEM_PROMPT = """Eres un profesor experto que escribe lecciones en español con Markdown.
Responde SOLO con un objeto JSON con las claves:
title, description, chunks (lista de 4 a 6 objetos {title, content}),
quiz ({title, questions: lista de 5 objetos {question, options (4 opciones), correctAnswer (índice desde 0), explanation}})."""


class CourseContentGenerator:
    def __init__(self, llm=ai_service):
        self.llm = llm

    def generate_course_metadata(self, course: Course) -> CourseMetadata:
        interests = ", ".join(course.user_interests or []) or "ninguno en particular"
        user_prompt = (
            f"Tema solicitado: {course.user_prompt}\n"
            f"Nivel del estudiante: {course.user_level or 'principiante'}\n"
            f"Intereses del estudiante: {interests}"
        )
        data = self.llm.generate_json(METADATA_SYSTEM_PROMPT, user_prompt)
        try:
            return CourseMetadata.model_validate(data)
        except PydanticValidationError as exc:
            raise GenerationError(f"Metadatos inválidos: {exc}") from exc

    def generate_module_content(self, course: Course, module_order: int) -> ModuleContent:
        module_list = list(course.module_list or [])
        if not 1 <= module_order <= len(module_list):
            raise GenerationError(f"El módulo {module_order} no existe en el plan del curso")

        previous = module_list[: module_order - 1]
        user_prompt = (
            f"Curso: {course.title}\n"
            f"Descripción: {course.description}\n"
            f"Plan completo: {json.dumps(module_list, ensure_ascii=False)}\n"
            f"Módulos anteriores: {json.dumps(previous, ensure_ascii=False)}\n"
            f"Escribe el módulo {module_order} de {len(module_list)}: {module_list[module_order - 1]}"
        )
        data = self.llm.generate_json(MODULE_SYSTEM_PROMPT, user_prompt)
        try:
            return ModuleContent.model_validate(data)
        except PydanticValidationError as exc:
            raise GenerationError(f"Contenido del módulo {module_order} inválido: {exc}") from exc


class CourseBuilder:
    def __init__(
        self,
        db: Session,
        generator: Optional[CourseContentGenerator] = None,
        video_finder: Optional[Callable[[str, str], Optional[dict]]] = youtube_service.find_video_for_chunk,
    ):
        self.db = db
        self.generator = generator or CourseContentGenerator()
        self.video_finder = video_finder

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def run(self, course_id: int, action: str, module_order: Optional[int] = None) -> dict:
        course = self.db.get(Course, course_id)
        if course is None:
            logger.warning("Trabajo de generación para un curso inexistente: %s", course_id)
            return {"courseId": course_id, "skipped": True}

        if action == "metadata":
            self.build_metadata(course)
        elif action == "module":
            self.build_module(course, module_order or 1)
            self._refresh_status(course)
        elif action == "remaining":
            self.build_remaining(course)
        else:
            raise ValueError(f"Acción de generación desconocida: {action}")

        return {"courseId": course.id, "status": course.status.value}

    def build_metadata(self, course: Course) -> None:
        if self._cancelled(course):
            return

        if not course.modules:
            self._log(course, "metadata_start", "Generando metadatos del curso")
            metadata = self.generator.generate_course_metadata(course)

            course.title = metadata.title
            course.description = metadata.description
            course.introduction = metadata.introduction
            course.prerequisites = list(metadata.prerequisites)
            course.module_list = list(metadata.module_list)
            course.topics = list(metadata.topics)
            course.language = metadata.language
            course.total_modules = metadata.total_modules
            for index, title in enumerate(metadata.module_list, start=1):
                course.modules.append(Module(module_order=index, title=title))
            course.status = CourseStatus.METADATA_READY
            self._log(course, "metadata_complete", f"Metadatos listos: {metadata.total_modules} módulos")
            self.db.commit()

        if self._cancelled(course):
            return

        course.status = CourseStatus.GENERATING_MODULE_1
        self.db.commit()
        self.build_module(course, 1)

        if self._cancelled(course):
            return
        course.status = CourseStatus.READY
        self.db.commit()
        logger.info("Curso %s listo para empezar", course.id)

    def build_module(self, course: Course, module_order: int) -> Module:
        module = next((m for m in course.modules if m.module_order == module_order), None)
        if module is None:
            raise GenerationError(f"El curso {course.id} no tiene módulo {module_order}")

        if module.chunks:
            logger.info("Módulo %s del curso %s ya tiene contenido", module_order, course.id)
            return module

        self._log(course, f"module{module_order}_start", f"Generando módulo {module_order}")
        content = self.generator.generate_module_content(course, module_order)

        module.title = content.title
        module.description = content.description
        for chunk_order, generated in enumerate(content.chunks, start=1):
            chunk = Chunk(chunk_order=chunk_order, title=generated.title, content=generated.content)
            if chunk_order == VIDEO_CHUNK_ORDER and self.video_finder is not None:
                chunk.video_data = self.video_finder(generated.title, course.title or "")
            module.chunks.append(chunk)

        if content.quiz is not None:
            quiz = Quiz(title=content.quiz.title)
            for question_order, question in enumerate(content.quiz.questions, start=1):
                quiz.questions.append(
                    QuizQuestion(
                        question_order=question_order,
                        question=question.question,
                        options=list(question.options),
                        correct_answer=question.correct_answer,
                        explanation=question.explanation,
                    )
                )
            module.quiz = quiz

        self._log(course, f"module{module_order}_complete", f"Módulo {module_order} generado")
        self.db.commit()
        logger.info("Módulo %s del curso %s generado (%s lecciones)", module_order, course.id, len(content.chunks))
        return module

    def build_remaining(self, course: Course) -> None:
        if self._cancelled(course):
            return

        course.status = CourseStatus.GENERATING_REMAINING
        self.db.commit()

        for module in sorted(course.modules, key=lambda m: m.module_order):
            if module.chunks:
                continue
            if self._cancelled(course):
                return
            self.build_module(course, module.module_order)

        course.status = CourseStatus.COMPLETE
        self.db.commit()
        logger.info("Todos los módulos del curso %s generados", course.id)

    def mark_failed(self, course_id: int, reason: str) -> bool:
        """Flag a course stuck in a generating state as FAILED."""

        course = self.db.get(Course, course_id)
        if course is None or not course.status.is_generating:
            return False

        course.status = CourseStatus.FAILED
        self._log(course, "generation_failed", reason[:2000])
        self.db.commit()
        logger.error("Generación del curso %s marcada como fallida: %s", course_id, reason)
        return True

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _cancelled(self, course: Course) -> bool:
        self.db.refresh(course, attribute_names=["status", "deleted_at"])
        if course.status == CourseStatus.FAILED or course.deleted_at is not None:
            logger.info("Curso %s cancelado o eliminado; se detiene la generación", course.id)
            return True
        return False

    def _refresh_status(self, course: Course) -> None:
        modules = course.modules
        if modules and all(module.chunks for module in modules):
            course.status = CourseStatus.COMPLETE
        elif modules and modules[0].chunks and course.status != CourseStatus.GENERATING_REMAINING:
            course.status = CourseStatus.READY
        self.db.commit()

    def _log(self, course: Course, action: str, message: str) -> None:
        self.db.add(GenerationLog(course_id=course.id, action=action, message=message))
