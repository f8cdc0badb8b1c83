"""
Worker 依赖的抽象接口

Dispatcher / TaskProcessor 只依赖这些 Protocol，
生产环境注入 Redis / SQLAlchemy 实现，测试注入 tests/fakes.py 里的替身。
"""
from typing import Any, Dict, List, Optional, Protocol

from shared.models import Task


class TaskRepo(Protocol):
    def create(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
               body: Optional[Dict[str, Any]] = None) -> Task: ...

    def get(self, task_id: str) -> Optional[Task]: ...

    def update(self, task_id: str, **fields) -> bool: ...


class MessageTransport(Protocol):
    """至少一次投递的消息队列"""

    @property
    def visibility_timeout(self) -> float: ...

    def receive(self, max_batch: int, wait_seconds: float, visibility_timeout: float,
                deadline: Optional[float] = None) -> List[Any]: ...

    def decode(self, message: Any) -> str: ...

    def delete(self, message: Any) -> None: ...

    def send(self, queue: str, payload: Any) -> str: ...


class Processor(Protocol):
    def process(self, task_id: str) -> None: ...

    def with_logger(self, logger) -> "Processor": ...
