from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from cursia.schemas.base_schema import CamelModel

COURSE_LEVELS = ("principiante", "intermedio", "avanzado")


class CourseCreate(BaseModel):
    prompt: str = Field(..., min_length=10, max_length=2000)
    level: str = "principiante"
    interests: List[str] = Field(default_factory=list, max_length=10)

    @field_validator("prompt")
    @classmethod
    def _strip_prompt(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 10:
            raise ValueError("El prompt debe tener al menos 10 caracteres")
        return value

    @field_validator("level")
    @classmethod
    def _check_level(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in COURSE_LEVELS:
            raise ValueError(f"Nivel inválido, usa uno de: {', '.join(COURSE_LEVELS)}")
        return value


class CourseIdPayload(CamelModel):
    course_id: int


class RegenerateModulesPayload(CamelModel):
    course_id: int
    module_orders: Optional[List[int]] = None


# --- Contrato del generador de contenido ---


class CourseMetadata(BaseModel):
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    prerequisites: List[str] = Field(default_factory=list)
    total_modules: int = Field(default=4, ge=1, le=10, alias="totalModules")
    module_list: List[str] = Field(..., min_length=1, max_length=10, alias="moduleList")
    topics: List[str] = Field(default_factory=list)
    introduction: Optional[str] = None
    language: str = "es"

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _sync_total_modules(self) -> "CourseMetadata":
        self.total_modules = len(self.module_list)
        return self


class GeneratedChunk(BaseModel):
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)


class GeneratedQuestion(BaseModel):
    question: str = Field(..., min_length=1)
    options: List[str] = Field(..., min_length=2)
    correct_answer: int = Field(..., ge=0, alias="correctAnswer")
    explanation: Optional[str] = None

    model_config = {"populate_by_name": True}

    @model_validator(mode="after")
    def _check_answer_index(self) -> "GeneratedQuestion":
        if self.correct_answer >= len(self.options):
            raise ValueError("correctAnswer fuera de rango")
        return self


class GeneratedQuiz(BaseModel):
    title: str = Field(..., min_length=1)
    questions: List[GeneratedQuestion] = Field(..., min_length=1)


class ModuleContent(BaseModel):
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    chunks: List[GeneratedChunk] = Field(..., min_length=1)
    quiz: Optional[GeneratedQuiz] = None
