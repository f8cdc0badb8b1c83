# schemas.py
from pydantic import BaseModel, Field
from typing import Optional, Dict, Any, List, Literal

HttpMethod = Literal["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


# 创建任务请求体
class CreateTaskRequest(BaseModel):
    method: HttpMethod
    url: str = Field(..., min_length=1)
    headers: Optional[Dict[str, str]] = None
    body: Optional[Dict[str, Any]] = None


class CreateTaskResponse(BaseModel):
    id: str


# 任务状态响应 (只暴露状态和响应摘要，不暴露失败原因)
class TaskStatusResponse(BaseModel):
    id: str
    status: str
    http_status_code: Optional[int] = None
    headers: Optional[Dict[str, List[str]]] = None
    length: Optional[int] = None


class ErrorResponse(BaseModel):
    error_message: str
