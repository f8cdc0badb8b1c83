# shared/utils/logger.py
import logging
import sys
import traceback

LOGGER_NAME = "requester"

# debug_log 里使用的自定义级别 -> 标准 logging 级别
_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "REQUEST": logging.INFO,
    "SUCCESS": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

logger = logging.getLogger(LOGGER_NAME)


def setup_logging(level="INFO"):
    """
    进程启动时调用一次：控制台输出 + 统一格式
    """
    root = logging.getLogger()
    root.setLevel(_LEVELS.get(str(level).upper(), logging.INFO))

    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s [%(threadName)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root.addHandler(handler)
    logging.captureWarnings(True)


def get_logger(name=None):
    if not name:
        return logger
    return logger.getChild(name)


def debug_log(message, level="INFO"):
    """
    通用日志输出
    :param level: INFO / REQUEST / SUCCESS / WARNING / ERROR ...
    """
    lvl = _LEVELS.get(str(level).upper(), logging.INFO)
    if level in ("REQUEST", "SUCCESS"):
        message = f"[{level}] {message}"
    logger.log(lvl, message)


def log_error(source, message, task_id=None, exc_info=True):
    """
    记录错误日志并写入 sys_logs 表 (带堆栈)
    写库失败只打日志，不会再向上抛出
    """
    stack_trace = None
    if exc_info:
        formatted = traceback.format_exc()
        if formatted and not formatted.startswith("NoneType: None"):
            stack_trace = formatted

    extra = f" | task_id={task_id}" if task_id else ""
    logger.error(f"[{source}] {message}{extra}" + (f"\n{stack_trace}" if stack_trace else ""))

    # 延迟导入，避免 models <-> logger 循环依赖
    from shared.database import SessionLocal
    from shared.models import SystemLog

    db = SessionLocal()
    try:
        db.add(SystemLog(
            level="ERROR",
            source=source,
            task_id=str(task_id) if task_id else None,
            message=str(message),
            stack_trace=stack_trace
        ))
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning(f"写入 sys_logs 失败: {e}")
    finally:
        db.close()


class ContextAdapter(logging.LoggerAdapter):
    """把上下文拼到日志前缀: [message_id=... task_id=...] msg"""

    def process(self, msg, kwargs):
        context = " ".join(f"{k}={v}" for k, v in self.extra.items())
        return f"[{context}] {msg}", kwargs


def bind_logger(base, **context):
    """
    在已有 logger / adapter 上追加上下文，返回新的 ContextAdapter
    """
    extra = dict(getattr(base, "extra", None) or {})
    extra.update({k: str(v) for k, v in context.items()})
    while isinstance(base, logging.LoggerAdapter):
        base = base.logger
    return ContextAdapter(base, extra)
