import time
import uuid
from dataclasses import dataclass
from typing import List, Optional

import redis

from shared.utils.logger import debug_log
from .errors import PoisonMessageError, QueueTransportError

DLQ_STREAM_KEY = "sys_dead_letters"
PAYLOAD_FIELD = "payload"


def _to_str(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="ignore")
    return str(value)


@dataclass
class QueueMessage:
    """
    一条从 Stream 领取的消息
    receive_count: 近似投递次数 (来自消费者组的 PEL)
    receipt_handle: ACK / 删除时使用的句柄 (Stream 中就是 entry id)
    """
    message_id: str
    body: Optional[str]
    receive_count: int = 1
    receipt_handle: Optional[str] = None

    def __post_init__(self):
        if self.receipt_handle is None:
            self.receipt_handle = self.message_id


class RedisStreamTransport:
    """
    基于 Redis Stream + 消费者组的至少一次投递队列

    - 新消息：XREADGROUP ... >
    - 重投递：被领取后超过 visibility_timeout 仍未 ACK 的消息由 XAUTOCLAIM 抢回
    - 投递次数：XPENDING 里的 times_delivered
    - 删除：XACK + XDEL
    """

    def __init__(
            self,
            redis_client: redis.Redis,
            stream_key: str,
            group_name: str,
            consumer_name: str,
            visibility_timeout: float = 300,
            max_message_attempts: int = 3,
            debug: bool = False,
            dlq_stream_key: str = DLQ_STREAM_KEY
    ):
        if redis_client is None:
            raise ValueError("must specify redis_client")
        self.redis_client = redis_client
        self.stream_key = stream_key
        self.group_name = group_name
        self.consumer_name = consumer_name
        self._visibility_timeout = visibility_timeout
        self.max_message_attempts = max_message_attempts
        self.debug = debug
        self.dlq_stream_key = dlq_stream_key

    @property
    def visibility_timeout(self) -> float:
        return self._visibility_timeout

    def ensure_group(self):
        """初始化 Stream 和消费者组 (已存在则跳过)"""
        try:
            self.redis_client.xgroup_create(self.stream_key, self.group_name, id='0', mkstream=True)
            debug_log(f"消费者组 {self.group_name} 就绪 (stream={self.stream_key})", "INFO")
        except redis.exceptions.ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise QueueTransportError(f"unable to create consumer group: {e}") from e
            debug_log(f"消费者组 {self.group_name} 已存在", "INFO")
        except redis.exceptions.RedisError as e:
            raise QueueTransportError(f"unable to create consumer group: {e}") from e

    # ------------------------------------------------------------------
    # 接收
    # ------------------------------------------------------------------
    def receive(self, max_batch: int, wait_seconds: float, visibility_timeout: float,
                deadline: Optional[float] = None) -> List[QueueMessage]:
        """
        领取最多 max_batch 条消息
        1. 先抢回超时未 ACK 的旧消息 (重投递)
        2. 旧消息为空时阻塞等待新消息，最长 min(wait_seconds, deadline) 秒
        超时返回空列表，Redis 异常转换为 QueueTransportError
        """
        if max_batch < 1:
            return []
        try:
            messages = self._claim_stale(max_batch, visibility_timeout)

            remaining = max_batch - len(messages)
            if remaining > 0:
                block_ms = None
                if not messages:
                    wait = wait_seconds if deadline is None else min(wait_seconds, deadline)
                    block_ms = max(int(wait * 1000), 1)
                response = self.redis_client.xreadgroup(
                    self.group_name, self.consumer_name, {self.stream_key: '>'},
                    count=remaining, block=block_ms
                )
                messages.extend(self._parse_entries(response))
            return messages
        except redis.exceptions.RedisError as e:
            raise QueueTransportError(f"unable to receive messages: {e}") from e

    def _claim_stale(self, max_batch: int, visibility_timeout: float) -> List[QueueMessage]:
        response = self.redis_client.xautoclaim(
            self.stream_key, self.group_name, self.consumer_name,
            min_idle_time=int(visibility_timeout * 1000), start_id="0-0", count=max_batch
        )
        if not response or len(response) < 2:
            return []

        messages = []
        for entry_id, fields in response[1]:
            # 已经被 XDEL 的条目 fields 为空，跳过
            if not fields:
                continue
            message_id = _to_str(entry_id)
            messages.append(QueueMessage(
                message_id=message_id,
                body=self._payload(fields),
                receive_count=self._times_delivered(message_id)
            ))
        return messages

    def _times_delivered(self, message_id: str) -> int:
        pending = self.redis_client.xpending_range(
            self.stream_key, self.group_name, min=message_id, max=message_id, count=1
        )
        if not pending:
            return 1
        return int(pending[0].get("times_delivered", 1))

    def _parse_entries(self, response) -> List[QueueMessage]:
        messages = []
        if not response:
            return messages
        for _stream, entries in response:
            for entry_id, fields in entries:
                messages.append(QueueMessage(
                    message_id=_to_str(entry_id),
                    body=self._payload(fields),
                    receive_count=1
                ))
        return messages

    @staticmethod
    def _payload(fields) -> Optional[str]:
        if not fields:
            return None
        value = fields.get(PAYLOAD_FIELD.encode(), fields.get(PAYLOAD_FIELD))
        if value is None:
            return None
        return _to_str(value)

    # ------------------------------------------------------------------
    # 解析 / 删除 / 发送
    # ------------------------------------------------------------------
    def decode(self, message: QueueMessage) -> str:
        """
        🛡️ 解析消息得到 task_id
        - 投递次数超过上限：移入死信 + 删除，抛出 PoisonMessageError
        - 内容不是合法 UUID：移入死信 + 删除，抛出 PoisonMessageError
        删除本身失败时抛出 QueueTransportError
        """
        if not self.debug and message.receive_count > self.max_message_attempts:
            reason = f"message has been received {message.receive_count} times"
            self.send_to_dlq(message, reason)
            self.delete(message)
            raise PoisonMessageError(
                PoisonMessageError.ATTEMPT_LIMIT_EXCEEDED,
                f"poison: attempt limit exceeded ({reason}). Deleted"
            )

        body = (message.body or "").strip()
        try:
            if not body:
                raise ValueError("empty payload")
            return str(uuid.UUID(body))
        except ValueError as e:
            self.send_to_dlq(message, f"malformed body: {e}")
            self.delete(message)
            raise PoisonMessageError(
                PoisonMessageError.MALFORMED_BODY,
                f"poison: malformed body ({e}). Deleted"
            ) from e

    def delete(self, message: QueueMessage) -> None:
        """ACK + 删除；重复删除不会报错"""
        try:
            self.redis_client.xack(self.stream_key, self.group_name, message.receipt_handle)
            self.redis_client.xdel(self.stream_key, message.receipt_handle)
        except redis.exceptions.RedisError as e:
            raise QueueTransportError(f"unable to delete message {message.message_id}: {e}") from e

    def send(self, queue: str, payload) -> str:
        """投递一条新消息 (由 API 网关调用)，返回 entry id"""
        try:
            entry_id = self.redis_client.xadd(queue, {PAYLOAD_FIELD: str(payload)})
        except redis.exceptions.RedisError as e:
            raise QueueTransportError(f"unable to send message to {queue}: {e}") from e
        return _to_str(entry_id)

    def send_to_dlq(self, message: QueueMessage, error_msg: str) -> None:
        """
        💀 把毒消息复制到死信 Stream，留给人工排查
        写入失败只记日志 (删除动作不受影响)
        """
        dead_msg = {
            "original_id": message.message_id,
            "stream": self.stream_key,
            "error": str(error_msg),
            "source_worker": self.consumer_name,
            "receive_count": str(message.receive_count),
            "failed_at": str(int(time.time())),
            "raw_payload": message.body or ""
        }
        try:
            self.redis_client.xadd(self.dlq_stream_key, dead_msg, maxlen=10000)
            debug_log(f"💀 已移入死信队列: {message.message_id} ({error_msg})", "WARNING")
        except redis.exceptions.RedisError as e:
            debug_log(f"写入死信队列失败: {e}", "ERROR")
