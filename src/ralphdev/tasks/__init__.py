"""Task storage: documents, index and repository."""

from ralphdev.tasks.model import IndexEntry, LanguageConfig, Task, TaskStatus

__all__ = ["IndexEntry", "LanguageConfig", "Task", "TaskStatus"]
