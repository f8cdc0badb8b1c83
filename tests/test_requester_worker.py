import pytest

from services.workers.core import ConfigurationError, Dispatcher, DispatcherState
from services.workers.requester import requester_worker

from tests.fakes import FakeRedis


def test_http_session_pool_matches_worker_count():
    session = requester_worker.build_http_session(4)

    adapter = session.get_adapter("https://example.com")
    assert adapter._pool_maxsize == 4


def test_build_dispatcher_wires_transport_and_pool(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(requester_worker.redis, "Redis", lambda **kwargs: fake)

    dispatcher = requester_worker.build_dispatcher()

    assert isinstance(dispatcher, Dispatcher)
    assert dispatcher.state is DispatcherState.IDLE
    assert dispatcher.workers == requester_worker.config.WORKERS
    assert dispatcher.transport.redis_client is fake
    # 消费者组已经创建
    assert fake.groups


@pytest.mark.parametrize("wait, deadline", [(20, 20), (30, 20)])
def test_receive_wait_must_be_shorter_than_deadline(monkeypatch, wait, deadline):
    fake = FakeRedis()
    monkeypatch.setattr(requester_worker.redis, "Redis", lambda **kwargs: fake)
    monkeypatch.setattr(requester_worker.config, "RECEIVE_WAIT_SECONDS", wait)
    monkeypatch.setattr(requester_worker.config, "RECEIVE_DEADLINE_SECONDS", deadline)

    with pytest.raises(ConfigurationError):
        requester_worker.build_dispatcher()

    assert fake.groups == {}
