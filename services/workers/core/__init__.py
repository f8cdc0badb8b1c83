from .errors import ConfigurationError, QueueTransportError, PoisonMessageError, TaskProcessingError
from .message_io import QueueMessage, RedisStreamTransport, DLQ_STREAM_KEY
from .processor import TaskProcessor
from .dispatcher import Dispatcher, DispatcherState, MAX_WORKERS
