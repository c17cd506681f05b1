import uuid

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from codemarket.models import Base, CreditConfig, Project, User
from codemarket.models.credit import ADMIN_ADJUSTMENT_TXN
from codemarket.services.credit_service import grant_credits
from codemarket.services.principal import Principal

SEED_CONFIGS = {
    "register_bonus": 100,
    "upload_bonus": 50,
    "docker_multiplier": 2,
    "review_bonus": 10,
    "daily_signin_bonus": 5,
    "referral_bonus": 200,
    "min_purchase_amount": 1,
    "max_daily_earn": 500,
    "platform_fee_percent": 0,
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def engine(tmp_path):
    """A fresh SQLite file database per test, schema created from the models."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        await conn.execute(
            insert(CreditConfig),
            [{"config_key": k, "config_value": v, "is_active": True}
             for k, v in SEED_CONFIGS.items()],
        )
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client():
    from codemarket.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

async def make_user(db, role="buyer", credits=0, username=None) -> Principal:
    """Insert a user, optionally funded, commit, and return its Principal."""
    user_id = uuid.uuid4()
    username = username or f"user_{user_id.hex[:8]}"
    db.add(User(user_id=user_id, email=f"{username}@example.com", username=username, role=role))
    await db.flush()
    if credits:
        await grant_credits(db, user_id, credits, ADMIN_ADJUSTMENT_TXN, "test funding")
    await db.commit()
    return Principal(user_id=user_id, role=role)


async def make_project(db, seller_id, price=100, status="approved", is_dockerized=False):
    project = Project(
        project_id=uuid.uuid4(),
        seller_id=seller_id,
        title="Kanban board starter",
        price=price,
        status=status,
        is_dockerized=is_dockerized,
    )
    db.add(project)
    await db.commit()
    return project.project_id
