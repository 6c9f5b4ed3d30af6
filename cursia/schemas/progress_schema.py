from typing import List

from pydantic import Field

from cursia.schemas.base_schema import CamelModel


class MarkChunkComplete(CamelModel):
    chunk_id: int
    update_position: bool = False


class QuizAttemptCreate(CamelModel):
    module_id: int
    answers: List[int] = Field(default_factory=list)
