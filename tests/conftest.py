from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from trading_api.main import app
from trading_api.database import get_db


@pytest.fixture
def auth_headers():
    # Identity the upstream gateway would forward
    return {"X-User-ID": "user-0001", "X-User-Email": "buyer@example.com"}


@pytest.fixture
def db_session():
    session = AsyncMock()
    session.flush = AsyncMock()
    session.add = MagicMock()
    session.get = AsyncMock(return_value=None)
    return session


@pytest.fixture
def client(db_session):
    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    # Not entered as a context manager: lifespan (DB connect) does not run
    yield TestClient(app)
    app.dependency_overrides.clear()
