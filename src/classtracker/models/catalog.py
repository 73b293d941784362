from __future__ import annotations

import re
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

WILDCARD_QUERY = "*"

EntryKey = tuple[str, str]  # (entry_id, subject_code)

_INT_RE = re.compile(r"^-?\d+$")
_FLOAT_RE = re.compile(r"^-?\d+\.\d+$")


class CatalogEntry(BaseModel):
    """Single course offering as returned in a catalog page.

    Accepts both the upstream search hit shape (``courseId``,
    ``courseDesignation``, nested ``subject``) and the flattened shape used
    elsewhere (``id``, ``name``, ``subjectCode``).
    """

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    entry_id: str = Field(validation_alias=AliasChoices("entry_id", "courseId", "id"))
    subject_code: str = Field(
        validation_alias=AliasChoices("subject_code", "subjectCode", "courseSubjectCode")
    )
    display_name: str = Field(
        default="", validation_alias=AliasChoices("display_name", "courseDesignation", "name")
    )
    title: str = ""
    credit_units: int | float | str | None = Field(
        default=None, validation_alias=AliasChoices("credit_units", "creditRange", "credits")
    )
    subject_description: str | None = None
    term_code: str | None = Field(
        default=None, validation_alias=AliasChoices("term_code", "termCode")
    )
    description: str | None = None

    @model_validator(mode="before")
    @classmethod
    def flatten_subject(cls, data: Any) -> Any:
        # Upstream hits nest the subject: {"subject": {"subjectCode": ..., ...}}
        if isinstance(data, dict) and isinstance(data.get("subject"), dict):
            subject = data["subject"]
            data = {k: v for k, v in data.items() if k != "subject"}
            data.setdefault("subjectCode", subject.get("subjectCode"))
            data.setdefault("termCode", subject.get("termCode"))
            data.setdefault("subject_description", subject.get("shortDescription"))
        return data

    @field_validator("credit_units", mode="before")
    @classmethod
    def parse_credits(cls, v: Any) -> Any:
        # "3" → 3, "1.5" → 1.5, ranges like "1-3" stay as text
        if isinstance(v, str):
            v = v.strip()
            if _INT_RE.match(v):
                return int(v)
            if _FLOAT_RE.match(v):
                return float(v)
            return v or None
        return v

    @property
    def key(self) -> EntryKey:
        return (self.entry_id, self.subject_code)


class CatalogQuery(BaseModel):
    """Cache key shape for one catalog page request."""

    model_config = ConfigDict(frozen=True)

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=50, ge=1)
    text: str = WILDCARD_QUERY

    @field_validator("text")
    @classmethod
    def normalise_text(cls, v: str) -> str:
        v = v.strip()
        return v or WILDCARD_QUERY

    def to_params(self) -> dict[str, str | int]:
        return {"page": self.page, "pageSize": self.page_size, "query": self.text}


class Term(BaseModel):
    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    term_code: str = Field(default="", validation_alias=AliasChoices("term_code", "termCode"))
    description: str = Field(
        default="",
        validation_alias=AliasChoices("description", "longDescription", "shortDescription"),
    )


class CatalogPage(BaseModel):
    """Result of resolving one CatalogQuery. Entries keep server order."""

    model_config = ConfigDict(frozen=True)

    entries: tuple[CatalogEntry, ...] = ()
    found: int = 0
    term: Term | None = None

    @classmethod
    def empty(cls) -> CatalogPage:
        return cls()
