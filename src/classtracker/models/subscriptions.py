from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from classtracker.models.catalog import EntryKey


class SubscriptionRecord(BaseModel):
    """One row of the user's subscription list. Its existence is the subscription."""

    model_config = ConfigDict(frozen=True, coerce_numbers_to_str=True)

    entry_id: str = Field(validation_alias=AliasChoices("entry_id", "courseId"))
    subject_code: str = Field(
        validation_alias=AliasChoices("subject_code", "courseSubjectCode")
    )
    entry_name: str = Field(default="", validation_alias=AliasChoices("entry_name", "courseName"))
    credits: int | None = None
    title: str = ""

    @property
    def display_name(self) -> str:
        return self.entry_name

    @property
    def key(self) -> EntryKey:
        return (self.entry_id, self.subject_code)


class SubscribeRequest(BaseModel):
    user_email: str = Field(serialization_alias="userEmail")
    user_full_name: str = Field(serialization_alias="userFullName")
    course_id: str = Field(serialization_alias="courseId")
    course_name: str = Field(serialization_alias="courseName")
    course_subject_code: str = Field(serialization_alias="courseSubjectCode")
    course_status: str | None = Field(default=None, serialization_alias="courseStatus")

    def to_payload(self) -> dict[str, str]:
        # courseStatus is left to the server's default unless explicitly set
        return self.model_dump(by_alias=True, exclude_none=True)


class UnsubscribeRequest(BaseModel):
    user_email: str = Field(serialization_alias="userEmail")
    course_id: str = Field(serialization_alias="courseId")
    course_subject_code: str = Field(serialization_alias="courseSubjectCode")

    def to_payload(self) -> dict[str, str]:
        return self.model_dump(by_alias=True)
