"""Background scheduling for remote sessions."""

from .keepalive import KeepAliveTask

__all__ = ['KeepAliveTask']
