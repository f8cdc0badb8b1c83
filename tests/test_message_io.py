import uuid

import pytest
import redis

from services.workers.core.errors import PoisonMessageError, QueueTransportError
from services.workers.core.message_io import DLQ_STREAM_KEY, QueueMessage, RedisStreamTransport


def receive(transport, visibility_timeout=300, max_batch=10):
    return transport.receive(max_batch=max_batch, wait_seconds=0.01,
                             visibility_timeout=visibility_timeout, deadline=1)


def test_send_then_receive(transport):
    task_id = str(uuid.uuid4())
    entry_id = transport.send("task-queue", task_id)

    messages = receive(transport)

    assert [m.message_id for m in messages] == [entry_id]
    assert messages[0].body == task_id
    assert messages[0].receive_count == 1
    assert messages[0].receipt_handle == entry_id


def test_receive_empty_queue_returns_empty_list(transport):
    assert receive(transport) == []


def test_receive_respects_max_batch(transport):
    for _ in range(5):
        transport.send("task-queue", uuid.uuid4())

    assert len(receive(transport, max_batch=2)) == 2
    assert len(receive(transport, max_batch=10)) == 3


def test_unacked_message_is_redelivered_after_visibility_timeout(transport):
    task_id = str(uuid.uuid4())
    transport.send("task-queue", task_id)
    first = receive(transport)

    # 可见性超时为 0：未删除的消息立刻可以被重新领取
    again = receive(transport, visibility_timeout=0)

    assert [m.message_id for m in again] == [first[0].message_id]
    assert again[0].body == task_id
    assert again[0].receive_count == 2


def test_deleted_message_is_not_redelivered(transport):
    transport.send("task-queue", uuid.uuid4())
    message = receive(transport)[0]

    transport.delete(message)

    assert receive(transport, visibility_timeout=0) == []


def test_delete_twice_is_harmless(transport):
    transport.send("task-queue", uuid.uuid4())
    message = receive(transport)[0]

    transport.delete(message)
    transport.delete(message)


def test_decode_returns_task_id(transport):
    task_id = str(uuid.uuid4())
    message = QueueMessage(message_id="1-0", body=f"  {task_id}\n")

    assert transport.decode(message) == task_id


@pytest.mark.parametrize("body", ["", None, "not-a-uuid", '{"id": 1}'])
def test_decode_malformed_body_is_evicted(transport, fake_redis, body):
    fake_redis.xadd("task-queue", {"payload": body or ""})
    message = receive(transport)[0]
    message.body = body

    with pytest.raises(PoisonMessageError) as exc_info:
        transport.decode(message)

    assert exc_info.value.reason == PoisonMessageError.MALFORMED_BODY
    assert fake_redis.entries("task-queue") == []
    assert fake_redis.pending("task-queue", "requester_group") == {}
    dead = fake_redis.entries(DLQ_STREAM_KEY)
    assert len(dead) == 1
    assert dead[0][1][b"original_id"] == message.message_id.encode()


def test_decode_evicts_after_attempt_limit(transport, fake_redis):
    transport.send("task-queue", uuid.uuid4())
    receive(transport)
    receive(transport, visibility_timeout=0)
    receive(transport, visibility_timeout=0)
    message = receive(transport, visibility_timeout=0)[0]
    assert message.receive_count == 4

    with pytest.raises(PoisonMessageError) as exc_info:
        transport.decode(message)

    assert exc_info.value.reason == PoisonMessageError.ATTEMPT_LIMIT_EXCEEDED
    assert "Deleted" in str(exc_info.value)
    assert fake_redis.entries("task-queue") == []
    assert receive(transport, visibility_timeout=0) == []
    assert fake_redis.entries(DLQ_STREAM_KEY)[0][1][b"receive_count"] == b"4"


def test_decode_at_attempt_limit_is_still_processed(transport):
    task_id = str(uuid.uuid4())
    message = QueueMessage(message_id="1-0", body=task_id, receive_count=3)

    assert transport.decode(message) == task_id


def test_debug_mode_disables_attempt_limit(fake_redis):
    transport = RedisStreamTransport(fake_redis, "task-queue", "requester_group", "worker-test",
                                     max_message_attempts=3, debug=True)
    task_id = str(uuid.uuid4())

    assert transport.decode(QueueMessage(message_id="1-0", body=task_id, receive_count=50)) == task_id


def test_redis_failures_become_transport_errors(transport, fake_redis):
    fake_redis.fail_with = redis.exceptions.ConnectionError("connection refused")
    message = QueueMessage(message_id="1-0", body=str(uuid.uuid4()))

    with pytest.raises(QueueTransportError):
        receive(transport)
    with pytest.raises(QueueTransportError):
        transport.delete(message)
    with pytest.raises(QueueTransportError):
        transport.send("task-queue", "x")


def test_dead_letter_failure_does_not_block_delete(transport, fake_redis):
    transport.send("task-queue", "garbage")
    message = receive(transport)[0]

    def broken_xadd(*args, **kwargs):
        raise redis.exceptions.ConnectionError("dlq unavailable")

    fake_redis.xadd = broken_xadd
    with pytest.raises(PoisonMessageError):
        transport.decode(message)

    assert fake_redis.entries("task-queue") == []


def test_ensure_group_is_idempotent(transport, fake_redis):
    transport.ensure_group()
    transport.ensure_group()


def test_ensure_group_reports_other_errors(fake_redis):
    fake_redis.fail_with = redis.exceptions.ConnectionError("down")
    transport = RedisStreamTransport(fake_redis, "task-queue", "requester_group", "worker-test")

    with pytest.raises(QueueTransportError):
        transport.ensure_group()


def test_transport_requires_client():
    with pytest.raises(ValueError):
        RedisStreamTransport(None, "task-queue", "requester_group", "worker-test")
