"""Shared fixtures: a testing configuration and a fresh store per test."""

import uuid
from datetime import date

import pytest

from schoolstore import ApplicationConfig, ClassRoster, Environment, Member, drop_store, set_config
from schoolstore.config import reset_config


@pytest.fixture(autouse=True)
def testing_config():
    config = ApplicationConfig.for_environment(Environment.TESTING)
    set_config(config)
    yield config
    reset_config()


@pytest.fixture
def store_name():
    """A store name no other test uses"""
    name = str(uuid.uuid4())
    yield name
    drop_store(name)


@pytest.fixture
def five_pupils_roster():
    """Factory for the five-pupil roster used by the delete scenarios"""
    def build(name: str = "SomeClassName_1") -> ClassRoster:
        return ClassRoster(
            name=name,
            members=[
                Member(first_name="Student", last_name="First", birth_date=date(2003, 3, 1)),
                Member(first_name="Student", last_name="Second", birth_date=date(2003, 4, 8)),
                Member(first_name="Student", last_name="Third", birth_date=date(2003, 8, 7)),
                Member(first_name="Student", last_name="Fourth", birth_date=date(2002, 12, 5)),
                Member(first_name="Student", last_name="Fith", birth_date=date(2002, 10, 28)),
            ]
        )
    return build
