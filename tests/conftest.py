import os
import tempfile

_tmp = tempfile.mkdtemp(prefix="crowdstack-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_tmp, 'test.db')}"
os.environ["QR_PASS_SECRET"] = "test_pass_secret"
os.environ["AUTH_JWT_SECRET"] = "test_auth_secret"
os.environ["APP_BASE_URL"] = "https://crowdstack.test"
os.environ["CHECKIN_POLICY"] = "single_use"

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fakeredis import aioredis  # noqa: E402

from crowdstack.cache import get_redis  # noqa: E402
from crowdstack.db import Base, SessionLocal, engine, init_db  # noqa: E402
from crowdstack.main import app  # noqa: E402


@pytest.fixture(autouse=True)
def fresh_db():
    init_db()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    s = SessionLocal()
    try:
        yield s
    finally:
        s.close()


@pytest_asyncio.fixture(scope="function")
async def redis():
    r = aioredis.FakeRedis(decode_responses=True)
    try:
        await r.flushall()
        yield r
    finally:
        await r.flushall()
        await r.aclose()


@pytest_asyncio.fixture(scope="function")
async def client(redis):
    app.dependency_overrides[get_redis] = lambda: redis
    transport = httpx.ASGITransport(app=app)
    try:
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver", timeout=10.0) as c:
            yield c
    finally:
        app.dependency_overrides.clear()
