"""Shared fixtures: settings and sample backend payloads."""

from __future__ import annotations

from typing import Any

import pytest

from classtracker.config import Settings

BASE_URL = "http://backend.test"


def make_hit(course_id: str, subject_code: str, designation: str, credits: str = "3") -> dict:
    """A catalog hit in the upstream search shape."""
    return {
        "courseId": course_id,
        "courseDesignation": designation,
        "title": f"Title of {designation}",
        "creditRange": credits,
        "description": f"About {designation}",
        "subject": {
            "subjectCode": subject_code,
            "shortDescription": designation.rsplit(" ", 1)[0],
            "termCode": "1262",
        },
    }


def courses_payload(hits: list[dict], found: int | None = None) -> dict[str, Any]:
    return {
        "term": {"termCode": "1262", "shortDescription": "Spring 2026"},
        "courses": {"hits": hits, "found": len(hits) if found is None else found},
    }


def subscriptions_payload(*keys: tuple[str, str]) -> dict[str, Any]:
    return {
        "subscriptions": [
            {
                "courseId": course_id,
                "courseSubjectCode": subject_code,
                "courseName": f"COURSE {course_id}",
                "credits": 3,
                "title": "Subscribed course",
            }
            for course_id, subject_code in keys
        ]
    }


# Two subjects share course id "001" on purpose.
SAMPLE_HITS = [
    make_hit("001", "266", "COMP SCI 200"),
    make_hit("001", "600", "MATH 221", credits="5"),
    make_hit("024", "266", "COMP SCI 400", credits="1-3"),
]


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        api={"base_url": BASE_URL, "timeout_seconds": 2},
        catalog={"page_size": 50},
        subscriptions={"poll_interval_seconds": 60},
        notifications={"duration_ms": 3000},
    )
