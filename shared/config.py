# shared/config.py
import os
import socket
from pathlib import Path

from dotenv import load_dotenv

# --- 1. 环境配置 ---
# 强制加载项目根目录的 .env (已经存在的环境变量优先)
project_root = Path(__file__).resolve().parent.parent
env_path = project_root / ".env"

if env_path.exists():
    load_dotenv(env_path)


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- 2. 数据库 ---
DB_USER = os.getenv("POSTGRES_USER", "postgres")
DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
DB_HOST = os.getenv("DB_HOST", "127.0.0.1")
DB_PORT = os.getenv("DB_PORT", "5432")
DB_NAME = os.getenv("POSTGRES_DB", "requester")

# DATABASE_URL 优先 (测试里会设置成 sqlite://)
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}"
)

# --- 3. Redis / 队列 ---
REDIS_HOST = os.getenv("REDIS_HOST", "127.0.0.1")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_DB = int(os.getenv("REDIS_DB", 0))

TASK_QUEUE = os.getenv("TASK_QUEUE", "task-queue")
GROUP_NAME = os.getenv("GROUP_NAME", "requester_workers_group")

worker_identity = os.getenv("WORKER_ID")
if not worker_identity:
    worker_identity = f"requester-{socket.gethostname()}-{os.getpid()}"
CONSUMER_NAME = f"worker-{worker_identity}"

# 消息在被领取但未 ACK 时对其他消费者不可见的时间 (秒)
VISIBILITY_TIMEOUT = float(os.getenv("VISIBILITY_TIMEOUT", 5 * 60))
# 超过该投递次数的消息视为毒消息，直接删除 (DEBUG 模式下不检查)
MAX_MESSAGE_ATTEMPTS = int(os.getenv("MAX_MESSAGE_ATTEMPTS", 3))
DEBUG = _env_bool("DEBUG", False)

# --- 4. Worker 池 ---
WORKERS = int(os.getenv("WORKERS", 3))
RECEIVE_WAIT_SECONDS = float(os.getenv("RECEIVE_WAIT_SECONDS", 10))
RECEIVE_DEADLINE_SECONDS = float(os.getenv("RECEIVE_DEADLINE_SECONDS", 20))

# --- 5. 外呼 HTTP ---
HTTP_TIMEOUT = float(os.getenv("HTTP_TIMEOUT", 10))
HTTP_CONNECT_TIMEOUT = float(os.getenv("HTTP_CONNECT_TIMEOUT", 5))

# --- 6. API ---
MOUNT_PREFIX = os.getenv("MOUNT_PREFIX", "/api/v1").rstrip("/")
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", 3000))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
