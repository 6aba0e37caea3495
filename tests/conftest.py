import os

# must be set before energy_console.users is imported
os.environ.setdefault("SECRET", "test-secret-not-for-production")
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["EMAIL_TRANSPORT"] = "dummy"
os.environ["SEND_LEAD_EMAILS"] = "false"
os.environ["RUN_DB_CREATE_ALL"] = "false"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from energy_console.database import Base, get_db
from energy_console import models  # noqa: F401
from energy_console.models import CardField, CardTemplate


@pytest_asyncio.fixture
async def engine():
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture(autouse=True)
def _reset_process_state():
    from energy_console.services.formulas import clear_formula_cache, formula_rate_limiter
    from energy_console.services.leads import lead_rate_limiter

    clear_formula_cache()
    formula_rate_limiter.reset()
    lead_rate_limiter.reset()
    yield
    clear_formula_cache()


@pytest_asyncio.fixture
async def client(session_maker):
    from energy_console.main import app
    from energy_console.utils import require_admin_user

    async def _get_db():
        async with session_maker() as session:
            yield session

    async def _admin():
        return models.User(id=1, email="admin@example.com", is_superuser=True, is_active=True)

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[require_admin_user] = _admin
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def make_card(db):
    """Create a card with ``fields``: list of (name, required) tuples."""

    async def _make(name="house", *, type="form", order=0, fields=(), is_active=True, **columns):
        card = CardTemplate(name=name, title=name.title(), type=type, display_order=order,
                            is_active=is_active, **columns)
        card.fields = [
            CardField(field_name=fname, label=fname, required=required, display_order=i)
            for i, (fname, required) in enumerate(fields)
        ]
        db.add(card)
        await db.commit()
        await db.refresh(card, attribute_names=["fields"])
        return card

    return _make
