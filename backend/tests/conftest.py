import pytest

from timetable_engine.core.config import Settings
from timetable_engine.schemas.subject import Subject
from timetable_engine.services.collaborators import InMemoryDirectory, InMemoryPersistence


@pytest.fixture()
def settings():
    return Settings()


@pytest.fixture()
def directory():
    return InMemoryDirectory()


@pytest.fixture()
def persistence():
    return InMemoryPersistence()


@pytest.fixture()
def make_subject():
    def factory(subject_id, name, hours, subject_type="theory", tags=None):
        return Subject(
            id=subject_id,
            name=name,
            hours_per_week=hours,
            type=subject_type,
            tags=tags or [],
        )

    return factory
