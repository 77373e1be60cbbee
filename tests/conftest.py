import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis

from app.store.redis_repo import RedisRepo
from tests.fakes import FakeApp


@pytest.fixture
def redis():
    return FakeRedis(server=FakeServer())


@pytest.fixture
def repo(redis):
    return RedisRepo(redis, tx_retries=8)


@pytest.fixture
def app(repo):
    return FakeApp(repo)
