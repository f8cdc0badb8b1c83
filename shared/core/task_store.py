from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from shared import models
from shared.database import SessionLocal
from shared.models import TaskStatus
from shared.utils.logger import debug_log

# update() 允许写入的列；请求描述 (method/url/headers/body) 创建后不可改
UPDATABLE_FIELDS = frozenset({
    "status",
    "response_status_code",
    "response_headers",
    "response_content_length",
})


class TaskStoreError(RuntimeError):
    """数据库读写失败"""


class TaskNotFoundError(LookupError):
    """update 时任务不存在"""


class TaskStore:
    """
    任务持久化 (Task Store)

    每次调用都打开独立的 Session，返回的 Task 对象已经从 Session 中分离，
    可以安全地在线程之间传递。Session 工厂本身是线程安全的。
    """

    def __init__(self, session_factory=SessionLocal):
        if session_factory is None:
            raise ValueError("must specify session_factory")
        self.session_factory = session_factory

    def create(self, method: str, url: str, headers: Optional[Dict[str, str]] = None,
               body: Optional[Dict[str, Any]] = None) -> models.Task:
        """
        创建任务，初始状态为 NEW，响应字段全部为空
        """
        db = self.session_factory()
        try:
            task = models.Task(
                status=TaskStatus.NEW.value,
                method=method,
                url=url,
                headers=headers,
                body=body
            )
            db.add(task)
            db.commit()
            db.refresh(task)
            db.expunge(task)
            debug_log(f"📝 任务已创建: {task.id} ({method} {url})", "INFO")
            return task
        except SQLAlchemyError as e:
            db.rollback()
            raise TaskStoreError(f"failed to create task: {e}") from e
        finally:
            db.close()

    def get(self, task_id: str) -> Optional[models.Task]:
        """
        按 ID 查询任务，不存在时返回 None
        """
        db = self.session_factory()
        try:
            task = db.query(models.Task).filter(models.Task.id == str(task_id)).first()
            if task is not None:
                db.expunge(task)
            return task
        except SQLAlchemyError as e:
            raise TaskStoreError(f"failed to load task {task_id}: {e}") from e
        finally:
            db.close()

    def update(self, task_id: str, **fields) -> bool:
        """
        部分更新：一次调用 = 一条 UPDATE 语句 (状态和响应字段原子写入)
        已经 DONE 的任务不再修改，返回 False；成功写入返回 True

        :raises ValueError: 没有 ID / 没有字段 / 字段不可修改
        :raises TaskNotFoundError: 任务不存在
        """
        if not task_id:
            raise ValueError("task_id is empty")
        if not fields:
            raise ValueError("no fields to update")
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"fields can't be updated: {sorted(unknown)}")

        values = dict(fields)
        if isinstance(values.get("status"), TaskStatus):
            values["status"] = values["status"].value

        db = self.session_factory()
        try:
            # status != done：第一个写入的 DONE 生效，之后的写入全部忽略
            # synchronize_session=False：不需要同步内存中的对象
            result = db.query(models.Task).filter(
                models.Task.id == str(task_id),
                models.Task.status != TaskStatus.DONE.value
            ).update(values, synchronize_session=False)
            db.commit()

            exists = True
            if result == 0:
                exists = db.query(models.Task.id).filter(models.Task.id == str(task_id)).first() is not None
        except SQLAlchemyError as e:
            db.rollback()
            raise TaskStoreError(f"failed to update task {task_id}: {e}") from e
        finally:
            db.close()

        if not exists:
            raise TaskNotFoundError(f"task {task_id} not found")
        if result == 0:
            debug_log(f"✋ 任务已完成，忽略更新: {task_id} -> {values}", "WARNING")
            return False
        return True
