import os
import sys
import tempfile
from pathlib import Path

import pytest
import pytest_asyncio


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Must be set before interview_coach.db creates its engine.
_DB_DIR = Path(tempfile.mkdtemp(prefix="interview-coach-tests-"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR / 'test.db'}"
os.environ["APP_ENV"] = "development"


@pytest.fixture(autouse=True)
def _no_scorer(monkeypatch: pytest.MonkeyPatch):
    """Tests opt in to a scorer explicitly; by default it is unreachable."""
    from interview_coach import evaluator

    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    monkeypatch.setattr(evaluator, "GROQ_API_KEY", None)


@pytest_asyncio.fixture
async def db():
    from interview_coach.db import drop_db, engine, init_db

    await drop_db()
    await init_db()
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def api(db):
    import httpx

    from interview_coach.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
