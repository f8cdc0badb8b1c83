import json
import logging
from typing import Dict, List, Optional, Tuple, Union

import requests

from shared.models import Task, TaskStatus
from shared.utils.logger import bind_logger
from .errors import ConfigurationError, TaskProcessingError
from .ports import TaskRepo

# requests 的 timeout 可以是 秒数 或 (connect, read)
Timeout = Union[float, Tuple[float, float]]


class _TaskState:
    """
    处理过程中任务的本地视图
    一旦本地状态到达 DONE，后续写入全部跳过 (包括兜底的 ERROR)
    """

    def __init__(self, task: Task):
        self.id = task.id
        self.status = TaskStatus(task.status)


class TaskProcessor:
    """
    🚀 单个任务的状态机：加载 -> 幂等检查 -> IN_PROCESS -> 外呼 -> DONE / ERROR
    """

    def __init__(self, task_store: TaskRepo, session: requests.Session, logger: logging.Logger,
                 request_timeout: Optional[Timeout] = 10):
        if task_store is None:
            raise ConfigurationError("must specify task_store")
        if session is None:
            raise ConfigurationError("must specify requests.Session")
        if logger is None:
            raise ConfigurationError("must specify logger")
        self.task_store = task_store
        self.session = session
        self.logger = logger
        self.request_timeout = request_timeout

    def with_logger(self, logger) -> "TaskProcessor":
        """返回绑定了新 logger 的副本 (用于带上 message_id)"""
        return TaskProcessor(self.task_store, self.session, logger, self.request_timeout)

    def process(self, task_id: str) -> None:
        """
        处理任务；正常返回即成功，失败时抛出异常 (消息留给重投递)

        - 任务不存在 / 已 DONE：直接返回
        - ERROR 状态的任务会被重新执行
        - 任何异常退出都会尝试把任务标记为 ERROR (已 DONE 的除外)
        """
        log = bind_logger(self.logger, task_id=task_id)

        task = self.task_store.get(task_id)
        if task is None:
            log.info("task not found")
            return

        if TaskStatus(task.status) == TaskStatus.DONE:
            log.info("task already done")
            return

        state = _TaskState(task)
        try:
            self._update_task(state, status=TaskStatus.IN_PROCESS)

            response = self._make_request(task)
            with response:
                status_code = response.status_code
                headers = _response_headers(response)
                content_length = _content_length(response)

            self._update_task(
                state,
                status=TaskStatus.DONE,
                response_status_code=status_code,
                response_headers=headers,
                response_content_length=content_length
            )
            log.info(f"✅ task done: HTTP {status_code}")
        except Exception as exc:
            log.warning(f"task failed: {exc}")
            self._mark_error(state, exc, log)
            raise

    def _mark_error(self, state: _TaskState, original: Exception, log) -> None:
        try:
            self._update_task(state, status=TaskStatus.ERROR)
        except Exception as secondary:
            log.error(f"failed to update task status: {secondary}")
            raise TaskProcessingError(original, secondary) from original

    def _update_task(self, state: _TaskState, status: TaskStatus, **response_fields) -> None:
        """写状态 (及响应字段)；DONE 之后调用是安全的空操作"""
        if state.status == TaskStatus.DONE:
            return
        self.task_store.update(state.id, status=status, **response_fields)
        state.status = status

    def _make_request(self, task: Task) -> requests.Response:
        data = None
        if task.body is not None:
            data = json.dumps(task.body).encode("utf-8")

        headers = dict(task.headers or {})

        # stream=True：只需要状态码和响应头，不读取响应体
        return self.session.request(
            task.method,
            task.url,
            data=data,
            headers=headers,
            timeout=self.request_timeout,
            stream=True,
            allow_redirects=True
        )


def _response_headers(response: requests.Response) -> Dict[str, List[str]]:
    """
    保留多值响应头及其原始顺序
    requests 的 response.headers 会把同名头用逗号拼起来，这里从 urllib3 原始头里取
    """
    raw_headers = getattr(response.raw, "headers", None)
    if raw_headers is not None and hasattr(raw_headers, "getlist"):
        return {name: list(raw_headers.getlist(name)) for name in raw_headers}
    return {name: [value] for name, value in response.headers.items()}


def _content_length(response: requests.Response) -> int:
    """远端未提供 Content-Length 时返回 -1 (不是 0)"""
    value = response.headers.get("Content-Length")
    if value is None:
        return -1
    try:
        return int(value)
    except ValueError:
        return -1
