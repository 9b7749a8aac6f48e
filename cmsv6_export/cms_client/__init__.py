"""
CMS API Client Module
"""
from .cms_api import CMSApiClient
from .errors import (
    CMSError,
    TransportError,
    ProtocolError,
    AuthenticationError,
    CMSResultError,
    ExportJobFailedError,
    CancellationError,
    ExportTimeoutError,
    TranscodeError,
)
from .models import (
    ExportTask,
    VideoFileInfo,
    DownloadTaskResult,
    TrackRecord,
    Pagination,
    TrackDetailPage,
    ExportedFile,
    TASK_STATUS_PENDING,
    TASK_STATUS_READY,
)

__all__ = [
    'CMSApiClient',
    # Errors
    'CMSError',
    'TransportError',
    'ProtocolError',
    'AuthenticationError',
    'CMSResultError',
    'ExportJobFailedError',
    'CancellationError',
    'ExportTimeoutError',
    'TranscodeError',
    # Models
    'ExportTask',
    'VideoFileInfo',
    'DownloadTaskResult',
    'TrackRecord',
    'Pagination',
    'TrackDetailPage',
    'ExportedFile',
    'TASK_STATUS_PENDING',
    'TASK_STATUS_READY',
]
