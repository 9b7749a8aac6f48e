"""
CMSV6 export client: video segment export and GPS track retrieval
"""
from .cms_client import CMSApiClient
from .config import CMSServer, Config
from .export import ExportPoller, PollPolicy, FFmpegTranscoder, VideoExporter

__version__ = '1.0.0'

__all__ = [
    'CMSApiClient',
    'CMSServer',
    'Config',
    'ExportPoller',
    'PollPolicy',
    'FFmpegTranscoder',
    'VideoExporter',
]
