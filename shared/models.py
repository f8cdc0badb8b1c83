# models.py
from sqlalchemy import Column, String, DateTime, Text, JSON, Integer, BigInteger
import uuid
from datetime import datetime
from enum import Enum
from shared.database import Base


class SystemLog(Base):
    """
    系统日志表
    用于记录详细的报错堆栈，方便开发者排查问题
    (任务表只保存状态，失败原因只写日志)
    """
    __tablename__ = "sys_logs"
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, index=True, autoincrement=True)
    level = Column(String, default="INFO", index=True)
    source = Column(String, index=True)
    task_id = Column(String, index=True, nullable=True)
    message = Column(Text)
    stack_trace = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.now)


class TaskStatus(str, Enum):
    NEW = "new"
    IN_PROCESS = "in_process"
    DONE = "done"
    ERROR = "error"


class Task(Base):
    """
    一次外呼请求及其结果
    method / url / headers / body 创建后不可修改
    response_* 只在进入 DONE 时一次性写入
    """
    __tablename__ = "requester_tasks"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    status = Column(String(16), default=TaskStatus.NEW.value, nullable=False, index=True)

    # 请求描述
    method = Column(String(16), nullable=False)
    url = Column(Text, nullable=False)
    headers = Column(JSON, nullable=True)  # {name: value}
    body = Column(JSON, nullable=True)

    # 响应摘要
    response_status_code = Column(Integer, nullable=True)
    response_headers = Column(JSON, nullable=True)  # {name: [v1, v2]}
    response_content_length = Column(BigInteger, nullable=True)

    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

    def __repr__(self):
        return f"<Task {self.id} {self.method} {self.url} status={self.status}>"
