class ConfigurationError(ValueError):
    """组件构造参数非法 (worker 数量越界 / 缺少依赖)"""


class QueueTransportError(RuntimeError):
    """消息队列不可达或命令执行失败 (可重试)"""


class PoisonMessageError(RuntimeError):
    """
    毒消息：消息已经被删除，调用方不能再处理它
    reason: attempt_limit_exceeded | malformed_body
    """

    ATTEMPT_LIMIT_EXCEEDED = "attempt_limit_exceeded"
    MALFORMED_BODY = "malformed_body"

    def __init__(self, reason, message):
        super().__init__(message)
        self.reason = reason


class TaskProcessingError(RuntimeError):
    """外呼失败，并且把任务标记为 ERROR 时也失败了：两个错误一起抛出"""

    def __init__(self, original, secondary):
        super().__init__(f"{original}; additionally failed to mark task as error: {secondary}")
        self.original = original
        self.secondary = secondary
