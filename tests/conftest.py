import os

# must be set before idea_recommender.infrastructure.db builds its engine
os.environ["APP_ENV"] = "test"
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime

import pytest
from sqlalchemy import create_engine

from idea_recommender.config import reset_settings
from idea_recommender.infrastructure import db
from idea_recommender.infrastructure.store import DataStore
from idea_recommender.ml.recommendation_engine import reset_orchestrator
from idea_recommender.models.records import ActionType
from idea_recommender.models.tables import Idea


@pytest.fixture
def engine(tmp_path):
    reset_settings()
    e = create_engine(f"sqlite:///{tmp_path / 'recommender.db'}", connect_args={"check_same_thread": False})
    db.Base.metadata.create_all(e)
    db.override_engine(e)
    reset_orchestrator()
    yield e
    reset_orchestrator()
    e.dispose()


@pytest.fixture
def store(engine):
    return DataStore()


@pytest.fixture
def add_idea(engine):
    def _add(idea_id, category=None, community=None, user_id=None, is_public=True,
             created_at=None, description=None, **meta):
        with db.get_session() as s:
            s.add(Idea(
                id=idea_id,
                title=f"Idea {idea_id}",
                category=category,
                subreddit=community,
                user_id=user_id,
                is_public=is_public,
                description=description,
                meta=meta or None,
                created_at=created_at or datetime.utcnow(),
            ))
            s.commit()
    return _add


@pytest.fixture
def add_behavior(store):
    def _add(user_id, item_id, action="like", occurred_at=None, **meta):
        store.insert_behavior(user_id, item_id, ActionType.parse(action), metadata=meta, occurred_at=occurred_at)
    return _add
