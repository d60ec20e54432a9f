import os

# Must be set before seller_analytics.config is imported.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["MESSAGES_LOCALE"] = "en"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from seller_analytics.models_sqlalchemy import Base
from seller_analytics.models_sqlalchemy import models


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(email="seller@example.com", role=models.UserRole.seller, is_active=True):
        user = models.User(email=email, role=role, is_active=is_active)
        db.add(user)
        db.flush()
        return user

    return _make


@pytest.fixture
def make_workspace(db):
    def _make(user, name="Main", api_key="key-1234567890", is_default=False, **kwargs):
        workspace = models.Workspace(
            user_id=user.id,
            name=name,
            api_key=api_key,
            is_default=is_default,
            **kwargs,
        )
        db.add(workspace)
        db.flush()
        return workspace

    return _make
