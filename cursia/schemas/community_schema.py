from typing import Optional

from pydantic import Field

from cursia.schemas.base_schema import CamelModel


class RateCourse(CamelModel):
    course_id: int
    # El rango 1-5 se valida en el servicio para responder 400.
    rating: int
    comment: Optional[str] = Field(default=None, max_length=2000)
