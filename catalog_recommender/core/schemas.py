"""
Validation models for data crossing the core's boundary: raw records from the
extraction layer and search requests from the calling layer.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class RawRecordIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    record_id: str
    catalog_id: str
    catalog_path: str
    text: str

    @field_validator('record_id', 'catalog_id', 'catalog_path')
    @classmethod
    def identifier_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('identifier cannot be empty')
        return v

    @field_validator('text')
    @classmethod
    def text_must_not_be_empty(cls, v):
        if not v:
            raise ValueError('text cannot be empty')
        return v


class SearchRequest(BaseModel):
    query_text: str
    top_k: int = Field(ge=1)
    min_similarity: Optional[float] = Field(default=None, ge=-1.0, le=1.0)

    @field_validator('query_text')
    @classmethod
    def query_must_not_be_blank(cls, v):
        if not v.strip():
            raise ValueError('query_text cannot be blank')
        return v
