"""Shared Pydantic bases for the API (camelCase JSON, snake_case Python)."""

from typing import Generic, List, TypeVar

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class PageResponse(CamelModel, Generic[T]):
    """Spring-style page"""
    content: List[T]
    total_elements: int
    total_pages: int
    size: int
    number: int


class MessageResponse(CamelModel):
    message: str


class CountResponse(CamelModel):
    count: int
