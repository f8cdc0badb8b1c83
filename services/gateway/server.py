import time
import uuid

import redis
from fastapi import FastAPI, APIRouter, Depends, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from shared import config, schemas
from shared.core import TaskStore
from shared.utils.logger import debug_log, log_error, setup_logging
from services.gateway.core.dispatch import dispatch_task, TaskDispatchError
from services.workers.core.message_io import RedisStreamTransport

GENERIC_ERROR_MESSAGE = (
    "An unexpected error occurred while processing the request. "
    "Please try again later or contact support."
)

app = FastAPI(title="Requester API", version="1.0.0")
router = APIRouter(prefix=config.MOUNT_PREFIX)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Redis 连接 (只负责投递) ---
redis_client = redis.Redis(host=config.REDIS_HOST, port=config.REDIS_PORT, db=config.REDIS_DB)
task_sender = RedisStreamTransport(
    redis_client,
    stream_key=config.TASK_QUEUE,
    group_name=config.GROUP_NAME,
    consumer_name=config.CONSUMER_NAME
)
task_store = TaskStore()


def _error_body():
    return schemas.ErrorResponse(error_message=GENERIC_ERROR_MESSAGE).model_dump()


# --- 依赖注入 (测试里通过 dependency_overrides 替换) ---
def get_task_store():
    return task_store


def get_task_sender():
    return task_sender


# --- 请求日志 ---
@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    debug_log(
        f"{request.method} {request.url.path} -> {response.status_code} "
        f"({(time.time() - start) * 1000:.1f}ms)",
        "REQUEST"
    )
    return response


# --- 参数校验失败 -> 400 + 通用提示 (与 500 的响应体格式一致)
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    debug_log(f"请求参数非法 {request.method} {request.url.path}: {exc.errors()}", "WARNING")
    return JSONResponse(status_code=400, content=_error_body())


# --- 未处理异常 -> 500 + 通用提示 (详细原因只写日志) ---
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log_error("Gateway", f"Internal server error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content=_error_body())


# ==========================================
# API 接口定义
# ==========================================
@router.get("/health")
def health_check():
    return {"status": "ok"}


@router.post(
    "/tasks",
    response_model=schemas.CreateTaskResponse,
    responses={400: {"model": schemas.ErrorResponse}, 500: {"model": schemas.ErrorResponse}}
)
def create_task(
        payload: schemas.CreateTaskRequest,
        store=Depends(get_task_store),
        sender=Depends(get_task_sender)
):
    """
    接收外呼请求：写入任务表 (NEW) 并投递到任务队列，由 requester worker 异步执行
    """
    try:
        task = dispatch_task(
            task_store=store,
            task_sender=sender,
            queue_name=config.TASK_QUEUE,
            method=payload.method,
            url=payload.url,
            headers=payload.headers,
            body=payload.body
        )
    except TaskDispatchError as e:
        log_error("Gateway", str(e), task_id=e.task_id)
        return JSONResponse(status_code=500, content=_error_body())

    return {"id": task.id}


@router.get("/tasks/{task_id}", response_model=schemas.TaskStatusResponse)
def get_task_status(task_id: uuid.UUID, store=Depends(get_task_store)):
    """
    查询任务状态

    返回:
        TaskStatusResponse: 状态 + 响应摘要 (仅 done 状态有响应字段)

    异常:
        HTTP 400: task_id 不是 UUID
        HTTP 404: 任务不存在
    """
    task = store.get(str(task_id))
    if task is None:
        debug_log(f"任务未找到: {task_id}", "WARNING")
        raise HTTPException(status_code=404, detail="Task not found")

    return {
        "id": task.id,
        "status": task.status,
        "http_status_code": task.response_status_code,
        "headers": task.response_headers,
        "length": task.response_content_length,
    }


app.include_router(router)


if __name__ == "__main__":
    import uvicorn

    setup_logging(config.LOG_LEVEL)
    # 启动命令: python -m services.gateway.server
    uvicorn.run(app, host=config.API_HOST, port=config.API_PORT)
