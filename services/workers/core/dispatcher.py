import queue
import threading
import time
from enum import Enum
from shared.utils.logger import bind_logger, log_error
from .errors import ConfigurationError, PoisonMessageError, QueueTransportError
from .ports import MessageTransport, Processor

MAX_WORKERS = 10
DEFAULT_WAIT_SECONDS = 10
DEFAULT_RECEIVE_DEADLINE = 20


class DispatcherState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class Dispatcher:
    """
    长轮询队列 -> 有界通道 -> 固定大小的 worker 线程池

    - 一个派发循环 (调用 run 的线程) 负责 receive，并把消息逐条交给 worker
    - 通道容量为 1：所有 worker 都忙时派发阻塞，不做无界缓冲
    - stop_event 置位后不再发起新的 receive；worker 处理完手上的消息后退出
    """

    def __init__(
            self,
            queue_url: str,
            workers: int,
            transport: MessageTransport,
            processor: Processor,
            logger,
            wait_seconds: float = DEFAULT_WAIT_SECONDS,
            receive_deadline: float = DEFAULT_RECEIVE_DEADLINE,
            poll_interval: float = 0.5,
            error_backoff: float = 5
    ):
        if not isinstance(workers, int) or isinstance(workers, bool) or not 1 <= workers <= MAX_WORKERS:
            raise ConfigurationError(f"workers count must be between 1 and {MAX_WORKERS}, got {workers!r}")
        if not queue_url:
            raise ConfigurationError("must specify queue_url")
        if transport is None:
            raise ConfigurationError("must specify transport")
        if processor is None:
            raise ConfigurationError("must specify processor")
        if logger is None:
            raise ConfigurationError("must specify logger")

        self.queue_url = queue_url
        self.workers = workers
        self.transport = transport
        self.processor = processor
        self.logger = logger
        self.wait_seconds = wait_seconds
        self.receive_deadline = receive_deadline
        self.poll_interval = poll_interval
        self.error_backoff = error_backoff

        self._state = DispatcherState.IDLE
        self._state_lock = threading.Lock()

    @property
    def state(self) -> DispatcherState:
        return self._state

    def _set_state(self, state: DispatcherState):
        with self._state_lock:
            self._state = state
        self.logger.debug(f"dispatcher state -> {state.value}")

    # ------------------------------------------------------------------
    # 主入口
    # ------------------------------------------------------------------
    def run(self, stop_event: threading.Event) -> None:
        """
        阻塞运行直到 stop_event 被置位 (或派发循环异常退出)
        返回时所有 worker 线程都已退出
        """
        with self._state_lock:
            if self._state in (DispatcherState.RUNNING, DispatcherState.DRAINING):
                raise RuntimeError("dispatcher is already running")
            self._state = DispatcherState.RUNNING

        self.logger.info(f"🚀 dispatcher started | queue={self.queue_url} workers={self.workers}")

        channel = queue.Queue(maxsize=1)
        threads = []
        for i in range(self.workers):
            t = threading.Thread(
                target=self._worker_loop,
                args=(stop_event, channel),
                name=f"requester-worker-{i + 1}",
                daemon=True
            )
            threads.append(t)
            t.start()

        try:
            self._dispatch_loop(stop_event, channel)
        except Exception as e:
            # 派发循环本身崩溃：记录后结束本次运行，并通知 worker 退出，避免它们无限等待
            log_error("Dispatcher", f"dispatch loop crashed: {e}")
            stop_event.set()
        finally:
            self._set_state(DispatcherState.DRAINING)
            for t in threads:
                t.join()
            self._set_state(DispatcherState.STOPPED)
            self.logger.info("dispatcher stopped")

    # ------------------------------------------------------------------
    # 派发循环
    # ------------------------------------------------------------------
    def _dispatch_loop(self, stop_event: threading.Event, channel: queue.Queue) -> None:
        while not stop_event.is_set():
            try:
                messages = self._receive_messages()
            except QueueTransportError as e:
                if stop_event.is_set():
                    break
                self.logger.error(f"Error reading messages from the queue: {e}")
                stop_event.wait(self.error_backoff)
                continue

            if stop_event.is_set():
                self.logger.info("Termination of the worker due to cancellation")
                return

            for message in messages:
                if not self._hand_off(stop_event, channel, message):
                    return

        self.logger.info("Termination of the worker due to cancellation")

    def _receive_messages(self):
        return self.transport.receive(
            max_batch=self.workers,
            wait_seconds=self.wait_seconds,
            visibility_timeout=self.transport.visibility_timeout,
            deadline=self.receive_deadline
        )

    def _hand_off(self, stop_event: threading.Event, channel: queue.Queue, message) -> bool:
        """交给空闲 worker；所有 worker 都忙时阻塞。停止时返回 False (消息留给重投递)"""
        while not stop_event.is_set():
            try:
                channel.put(message, timeout=self.poll_interval)
                return True
            except queue.Full:
                continue
        return False

    # ------------------------------------------------------------------
    # worker
    # ------------------------------------------------------------------
    def _worker_loop(self, stop_event: threading.Event, channel: queue.Queue) -> None:
        while not stop_event.is_set():
            try:
                message = channel.get(timeout=self.poll_interval)
            except queue.Empty:
                continue

            try:
                self.handle_message(message)
            except Exception as e:
                # 单条消息的意外错误不影响其他 worker，本 worker 继续循环
                log_error("Dispatcher", f"unexpected error while handling message: {e}")

    def handle_message(self, message) -> bool:
        """
        处理一条消息：解析 -> 执行任务 -> 成功后删除
        返回 True 表示消息已被删除
        """
        start = time.monotonic()
        message_id = getattr(message, "message_id", None)
        log = bind_logger(self.logger, message_id=message_id)
        log.info("Message received for processing")

        try:
            task_id = self.transport.decode(message)
        except PoisonMessageError as e:
            log.error(f"Error decoding the message: {e}")
            return False
        except QueueTransportError as e:
            log.error(f"Error deleting the poison message: {e}")
            return False

        try:
            self.processor.with_logger(log).process(task_id)
        except Exception as e:
            log.error(f"Error processing the message: {e}")
            return False

        try:
            self.transport.delete(message)
        except QueueTransportError as e:
            log.error(f"Error deleting the message: {e}")
            return False

        log.info(f"Successfully processed the message in {time.monotonic() - start:.3f}s")
        return True

