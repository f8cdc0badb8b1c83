# tests/conftest.py
import os

# 必须在导入 shared.* 之前设置：全局引擎使用 SQLite 内存库，不连接真实数据库
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("DEBUG", "false")

import logging  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from shared import models  # noqa: E402,F401
from shared.core import TaskStore  # noqa: E402
from shared.database import Base, build_engine, engine  # noqa: E402
from services.workers.core.message_io import RedisStreamTransport  # noqa: E402

from tests.fakes import FakeRedis  # noqa: E402


@pytest.fixture(scope="session", autouse=True)
def _global_tables():
    # log_error 会往全局引擎的 sys_logs 表写记录
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def session_factory(tmp_path):
    # 多线程测试需要真正的连接池，这里用临时文件库
    db_engine = build_engine(f"sqlite:///{tmp_path / 'tasks.db'}")
    Base.metadata.create_all(bind=db_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db_engine.dispose()


@pytest.fixture
def store(session_factory):
    return TaskStore(session_factory)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def transport(fake_redis):
    t = RedisStreamTransport(
        fake_redis,
        stream_key="task-queue",
        group_name="requester_group",
        consumer_name="worker-test",
        visibility_timeout=300,
        max_message_attempts=3
    )
    t.ensure_group()
    return t


@pytest.fixture
def test_logger():
    return logging.getLogger("requester.test")
