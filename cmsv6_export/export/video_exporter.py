"""
Video Exporter
Walks a time range in short windows and fetches every recorded segment
"""
import logging
import threading
from datetime import datetime, time as dt_time, timedelta
from typing import Callable, List, Optional

from .. import metrics
from ..cms_client.cms_api import CMSApiClient
from ..cms_client.errors import TranscodeError
from ..cms_client.models import ExportedFile
from ..cms_client.utils import to_cms_local
from .export_poller import ExportPoller
from .transcoder import FFmpegTranscoder, Transcoder

logger = logging.getLogger(__name__)


class VideoExporter:
    """
    Exports recorded video for one device channel over a time range.

    The range is stepped in fixed windows (5s by default): the gateway's
    file lookup returns incomplete results for longer windows. For every
    window the exporter looks up export tasks once, then for each task
    waits until the server has packaged it, downloads it and transcodes it.
    Transcoder failures are logged and skipped; anything else aborts.
    """

    DEFAULT_WINDOW_SECONDS = 5

    def __init__(self, client: CMSApiClient, poller: Optional[ExportPoller] = None,
                 transcoder: Optional[Transcoder] = None,
                 window_seconds: int = DEFAULT_WINDOW_SECONDS,
                 output_dir: Optional[str] = None,
                 on_file: Optional[Callable[[ExportedFile], None]] = None):
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self.client = client
        self.poller = poller or ExportPoller(client)
        self.transcoder = transcoder or FFmpegTranscoder()
        self.window = timedelta(seconds=window_seconds)
        self.output_dir = output_dir
        self.on_file = on_file

    def _window_end(self, window_start: datetime) -> datetime:
        # The lookup cannot span midnight
        end_of_day = datetime.combine(window_start.date(), dt_time(23, 59, 59))
        return min(window_start + self.window, end_of_day)

    def _next_window_start(self, window_start: datetime, window_end: datetime) -> datetime:
        # A window cut short at 23:59:59 resumes at the next midnight
        if window_end < window_start + self.window:
            return datetime.combine(window_start.date() + timedelta(days=1), dt_time())
        return window_start + self.window

    def export(self, device_id, channel: int, start_time: datetime, stop_time: datetime,
               cancel_event: Optional[threading.Event] = None) -> List[ExportedFile]:
        """Export every segment between start_time and stop_time (inclusive)."""
        tz = self.client.server.timezone
        window_start = to_cms_local(start_time, tz)
        stop = to_cms_local(stop_time, tz)
        exported: List[ExportedFile] = []

        logger.info(f"Exporting video {window_start} - {stop}",
                    extra={"device_id": device_id, "channel": channel})

        while not window_start > stop:
            window_end = self._window_end(window_start)
            info = self.client.get_video_file_info(device_id, channel, window_start, window_end)

            for task in info.files:
                exported.append(self._export_task(device_id, channel, window_start,
                                                  task.down_task_url, cancel_event))

            window_start = self._next_window_start(window_start, window_end)

        logger.info(f"Export finished: {len(exported)} file(s)",
                    extra={"device_id": device_id, "channel": channel})
        return exported

    def _export_task(self, device_id, channel: int, window_start: datetime,
                     task_url: str, cancel_event: Optional[threading.Event]) -> ExportedFile:
        ready = self.poller.wait_until_ready(task_url, cancel_event)
        local_path = self.client.download(device_id, ready.length, ready.file_path,
                                          output_dir=self.output_dir)

        exported = ExportedFile(
            device_id=str(device_id),
            channel=channel,
            window_start=window_start,
            downloaded_path=local_path,
        )
        try:
            exported.transcoded_path = self.transcoder.convert(local_path)
        except TranscodeError as e:
            logger.error(f"Transcoding failed: {e.message} {e.stderr}".rstrip(),
                         extra={"device_id": device_id, "channel": channel, "file": local_path})

        metrics.record_exported_file()
        if self.on_file:
            self.on_file(exported)
        return exported
