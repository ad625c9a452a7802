"""Controller package: background execution and the file manager facade."""

from .main_controller import FileManagerController
from .task_runner import BackgroundTaskRunner, MainThreadDispatcher, categorize_error

__all__ = ['FileManagerController', 'BackgroundTaskRunner', 'MainThreadDispatcher', 'categorize_error']
