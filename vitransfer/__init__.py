from .auth_management.auth_refresh import AuthRefreshInterceptor
from .auth_management.token_manager import TokenManager
from .bootstrap import build_upload_queue
from .config_manager.config import ConfigManager
from .config_manager.upload_config import UploadQueueConfig
from .event_emitter import Emitter
from .exceptions import (
    AuthError,
    NetworkError,
    PayloadTooLargeError,
    RecordCreationError,
    TransferError,
    UnknownTransferError,
    UploadError,
    ValidationError,
)
from .models import LocalFile, QueueStats, UploadItem, UploadStatus
from .upload_management.upload_queue import UploadQueue

__version__ = "0.3.0"

__all__ = [
    "AuthError",
    "AuthRefreshInterceptor",
    "ConfigManager",
    "Emitter",
    "LocalFile",
    "NetworkError",
    "PayloadTooLargeError",
    "QueueStats",
    "RecordCreationError",
    "TokenManager",
    "TransferError",
    "UnknownTransferError",
    "UploadError",
    "UploadItem",
    "UploadQueue",
    "UploadQueueConfig",
    "UploadStatus",
    "ValidationError",
    "build_upload_queue",
]
