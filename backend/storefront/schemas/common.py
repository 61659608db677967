from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class CamelModel(BaseModel):
    """Wire models speak camelCase; Python code uses the snake_case field names."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ApiResponse(CamelModel, Generic[T]):
    success: bool = True
    message: str = ""
    data: Optional[T] = None


class Pagination(CamelModel):
    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, total: int, page: int, limit: int) -> "Pagination":
        total_pages = -(-total // limit) if limit else 0
        return cls(
            total=total,
            page=page,
            limit=limit,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )
