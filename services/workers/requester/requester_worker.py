import signal
import threading

import redis
import requests
from requests.adapters import HTTPAdapter

from shared import config
from shared.core import TaskStore
from shared.utils.logger import debug_log, get_logger, setup_logging
from services.workers.core import ConfigurationError, Dispatcher, RedisStreamTransport, TaskProcessor


def build_http_session(pool_size: int) -> requests.Session:
    """外呼用的共享 Session；连接池大小与 worker 数量一致"""
    session = requests.Session()
    adapter = HTTPAdapter(pool_connections=pool_size, pool_maxsize=pool_size)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def build_dispatcher() -> Dispatcher:
    logger = get_logger("worker")

    # XREADGROUP 的 BLOCK 必须短于 socket_timeout，否则空轮询会以 TimeoutError 结束
    if config.RECEIVE_WAIT_SECONDS >= config.RECEIVE_DEADLINE_SECONDS:
        raise ConfigurationError(
            f"RECEIVE_WAIT_SECONDS ({config.RECEIVE_WAIT_SECONDS}) must be less than "
            f"RECEIVE_DEADLINE_SECONDS ({config.RECEIVE_DEADLINE_SECONDS})"
        )

    # socket_timeout 就是单次 receive 的最长期限
    redis_client = redis.Redis(
        host=config.REDIS_HOST,
        port=config.REDIS_PORT,
        db=config.REDIS_DB,
        socket_timeout=config.RECEIVE_DEADLINE_SECONDS
    )
    transport = RedisStreamTransport(
        redis_client,
        stream_key=config.TASK_QUEUE,
        group_name=config.GROUP_NAME,
        consumer_name=config.CONSUMER_NAME,
        visibility_timeout=config.VISIBILITY_TIMEOUT,
        max_message_attempts=config.MAX_MESSAGE_ATTEMPTS,
        debug=config.DEBUG
    )
    transport.ensure_group()

    processor = TaskProcessor(
        TaskStore(),
        build_http_session(config.WORKERS),
        logger,
        request_timeout=(config.HTTP_CONNECT_TIMEOUT, config.HTTP_TIMEOUT)
    )
    return Dispatcher(
        config.TASK_QUEUE,
        config.WORKERS,
        transport,
        processor,
        logger,
        wait_seconds=config.RECEIVE_WAIT_SECONDS,
        receive_deadline=config.RECEIVE_DEADLINE_SECONDS
    )


def start_worker():
    setup_logging(config.LOG_LEVEL)
    debug_log("=" * 40, "INFO")
    debug_log(f"🚀 Requester Worker 启动 | 监听: {config.TASK_QUEUE} | 消费者: {config.CONSUMER_NAME}", "INFO")

    dispatcher = build_dispatcher()
    stop_event = threading.Event()

    def _shutdown(signum, _frame):
        debug_log(f"收到信号 {signum}，停止接收新消息并等待处理中的任务完成...", "WARNING")
        stop_event.set()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    debug_log("Waiting for messages", "INFO")
    dispatcher.run(stop_event)
    debug_log("👋 Worker 已退出", "INFO")


if __name__ == "__main__":
    start_worker()
