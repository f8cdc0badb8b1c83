# services/gateway/core/dispatch.py
from typing import Any, Dict, Optional

from shared import models
from shared.models import TaskStatus
from shared.utils.logger import debug_log


class TaskDispatchError(RuntimeError):
    """
    消息投递失败
    如果把任务标记为 ERROR 也失败了，status_update_error 里保存第二个错误
    """

    def __init__(self, task_id, send_error, status_update_error=None):
        message = f"failed to queue task {task_id}: {send_error}"
        if status_update_error is not None:
            message += f"; failed to update task status: {status_update_error}"
        super().__init__(message)
        self.task_id = task_id
        self.send_error = send_error
        self.status_update_error = status_update_error


def dispatch_task(
        task_store,
        task_sender,
        queue_name: str,
        method: str,
        url: str,
        headers: Optional[Dict[str, str]] = None,
        body: Optional[Dict[str, Any]] = None
) -> models.Task:
    """
    创建任务记录 (NEW) 并把 task_id 推送到队列
    投递失败时任务标记为 ERROR，再抛出 TaskDispatchError
    """
    task = task_store.create(method=method, url=url, headers=headers, body=body)

    try:
        task_sender.send(queue_name, task.id)
    except Exception as e:
        debug_log(f"❌ 分发失败: {task.id} - {e}", "ERROR")
        try:
            task_store.update(task.id, status=TaskStatus.ERROR)
        except Exception as update_error:
            raise TaskDispatchError(task.id, e, update_error) from e
        raise TaskDispatchError(task.id, e) from e

    debug_log(f" -> [分发] Task: {task.id} | Queue: {queue_name}", "INFO")
    return task
