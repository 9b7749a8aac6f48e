"""
Video Export Module
"""
from .export_poller import ExportPoller, PollPolicy
from .transcoder import Transcoder, FFmpegTranscoder
from .video_exporter import VideoExporter

__all__ = [
    'ExportPoller',
    'PollPolicy',
    'Transcoder',
    'FFmpegTranscoder',
    'VideoExporter',
]
