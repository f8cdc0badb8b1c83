from .task_store import TaskStore, TaskStoreError, TaskNotFoundError, UPDATABLE_FIELDS
