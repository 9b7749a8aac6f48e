"""
CMS API Client for video export and GPS track retrieval
Synchronous client for a single CMSV6 gateway
"""
import logging
import os
import threading
import time
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Tuple

import requests

from .. import metrics
from ..config import CMSServer
from .errors import AuthenticationError, CMSResultError, ProtocolError, TransportError
from .models import DownloadTaskResult, TrackDetailPage, TrackRecord, VideoFileInfo
from .utils import (
    format_cms_time,
    get_api_error_message,
    local_download_path,
    seconds_in_day,
    server_file_name,
    split_download_task_url,
    to_cms_local,
)

logger = logging.getLogger(__name__)


class CMSApiClient:
    """
    CMS API Client for a single CMS server.

    The session token (jsession) is acquired lazily on the first call and
    reused for the lifetime of the client. There is no expiry handling;
    call reauthenticate() to replace it explicitly.

    Not meant to be shared between threads: run one client per worker.
    """

    DEFAULT_PAGE_SIZE = 500
    MAX_TRACK_PAGES = 50
    DOWNLOAD_CHUNK_SIZE = 64 * 1024

    def __init__(self, server: CMSServer, http_session: Optional[requests.Session] = None):
        self.server = server
        self.timeout = server.request_timeout
        self.session_id: Optional[str] = None
        self._http = http_session or requests.Session()
        self._session_lock = threading.Lock()
        self._request_count = 0
        self._error_count = 0

    def close(self):
        """Close the underlying HTTP session"""
        self._http.close()

    def __enter__(self) -> 'CMSApiClient':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # =========================================================================
    # Session Management
    # =========================================================================

    def _login(self) -> str:
        """Login to CMS and get session ID"""
        url = f"{self.server.base_url}/StandardApiAction_login.action"
        params = {
            'account': self.server.username,
            'password': self.server.password
        }

        try:
            response = self._send('POST', url, 'login', params=params, check_status=False)
        except TransportError:
            metrics.record_login('transport_error')
            raise

        if response.status_code != 200:
            metrics.record_login('failed')
            raise AuthenticationError(
                f"Login to CMS {self.server.name} failed. Status code: {response.status_code}",
                details={'statusCode': response.status_code, 'body': response.text},
            )

        try:
            data = response.json()
        except ValueError as e:
            metrics.record_login('failed')
            raise AuthenticationError(f"Login response is not valid JSON: {e}",
                                      details={'body': response.text}) from e

        result = data.get('result') if isinstance(data, dict) else None
        jsession = data.get('jsession') if isinstance(data, dict) else None
        if result != 0 or not jsession:
            metrics.record_login('failed')
            raise AuthenticationError(f"Login failed: result={result}",
                                      details={'result': result})

        self.session_id = jsession
        metrics.record_login('ok')
        logger.info(f"Logged into CMS server: {self.server.name} ({self.server.host})")
        return self.session_id

    def _ensure_session(self) -> str:
        """Ensure we have a valid session"""
        with self._session_lock:
            if not self.session_id:
                return self._login()
            return self.session_id

    def invalidate_session(self):
        """Forget the current session; the next call logs in again"""
        with self._session_lock:
            self.session_id = None

    def reauthenticate(self) -> str:
        """Discard the current session and log in again"""
        with self._session_lock:
            self.session_id = None
            return self._login()

    # =========================================================================
    # HTTP Helpers
    # =========================================================================

    def _send(self, method: str, url: str, action: str, params=None,
              stream: bool = False, check_status: bool = True,
              record_ok: bool = True) -> requests.Response:
        """Send one request, mapping failures onto the client error types.

        With record_ok=False the caller records the outcome once it has
        consumed the body.
        """
        self._request_count += 1
        start_time = time.perf_counter()

        try:
            response = self._http.request(method, url, params=params,
                                          timeout=self.timeout, stream=stream)
        except requests.RequestException as e:
            self._error_count += 1
            metrics.record_request(action, 'transport_error', time.perf_counter() - start_time)
            logger.error(f"CMS request {action} failed: {e}")
            raise TransportError(f"CMS request {action} failed: {e}",
                                 details={'url': url}) from e

        duration = time.perf_counter() - start_time
        if check_status and response.status_code != 200:
            self._error_count += 1
            metrics.record_request(action, 'protocol_error', duration)
            body = response.text
            response.close()
            raise ProtocolError(
                f"Fail to send request to server. Status code: {response.status_code}, info: {body}",
                status_code=response.status_code,
                body=body,
            )

        if record_ok:
            metrics.record_request(action, 'ok', duration)
        return response

    def _body_failed(self, action: str, start_time: float, outcome: str = 'protocol_error'):
        self._error_count += 1
        metrics.record_request(action, outcome, time.perf_counter() - start_time)

    def _request_json(self, method: str, url: str, action: str, params=None) -> Dict[str, Any]:
        start_time = time.perf_counter()
        response = self._send(method, url, action, params=params, record_ok=False)
        try:
            data = response.json()
        except ValueError as e:
            self._body_failed(action, start_time)
            raise ProtocolError(f"Malformed JSON from {action}: {e}",
                                status_code=response.status_code,
                                body=response.text) from e
        if not isinstance(data, dict):
            self._body_failed(action, start_time)
            raise ProtocolError(f"Unexpected JSON from {action}: {type(data).__name__}",
                                status_code=response.status_code,
                                body=response.text)
        metrics.record_request(action, 'ok', time.perf_counter() - start_time)
        return data

    # =========================================================================
    # Video Export
    # =========================================================================

    def get_video_file_info(self, device_id, channel: int,
                            start_time: datetime, end_time: datetime) -> VideoFileInfo:
        """Look up export candidates for a device/channel over part of one day.

        The vendor API takes the date once plus two offsets in seconds from
        midnight, so start_time and end_time must fall on the same day.
        """
        start_local = to_cms_local(start_time, self.server.timezone)
        end_local = to_cms_local(end_time, self.server.timezone)
        if start_local.date() != end_local.date():
            raise ValueError(
                f"Video file lookup cannot cross midnight: {start_local} - {end_local}"
            )

        jsession = self._ensure_session()
        url = f"{self.server.base_url}/StandardApiAction_getVideoFileInfc.action"
        params = [
            ('DevIDNO', device_id),
            ('LOC', 1),
            ('CHN', channel),
            ('YEAR', start_local.year),
            ('MON', start_local.month),
            ('DAY', start_local.day),
            ('RECTYPE', -1),
            ('FILEATTR', 2),
            ('BEG', seconds_in_day(start_local)),
            ('END', seconds_in_day(end_local)),
            ('ARM1', 0),
            ('ARM2', 0),
            ('RES', 0),
            ('STREAM', 0),
            ('STORE', 0),
            ('jsession', jsession),
        ]

        logger.debug(f"[Videos] Querying device={device_id}, channel={channel}, "
                     f"{start_local} - {end_local}")
        data = self._request_json('POST', url, 'getVideoFileInfc', params=params)
        info = VideoFileInfo.from_dict(data)
        logger.debug(f"[Videos] {len(info.files)} export task(s) for device={device_id}")
        return info

    def get_download_task(self, task_url: str) -> DownloadTaskResult:
        """Check the status of a server-side export job"""
        jsession = self._ensure_session()
        base_url, params = split_download_task_url(task_url, jsession)
        data = self._request_json('GET', base_url, 'downloadTask', params=params)
        return DownloadTaskResult.from_dict(data)

    def download(self, device_id, length: int, server_path: str,
                 output_dir: Optional[str] = None) -> str:
        """Download a packaged export file from the download server.

        The body is written verbatim to a file named after the last segment
        of server_path inside output_dir (current directory by default).

        Returns:
            Local path of the written file
        """
        jsession = self._ensure_session()
        file_name = server_file_name(server_path)
        local_path = local_download_path(server_path, output_dir)

        url = f"{self.server.download_base_url}/3/5"
        params: List[Tuple[str, Any]] = [
            ('DownType', 3),
            ('jsession', jsession),
            ('DevIDNO', device_id),
            ('FILELOC', 1),
            ('FLENGTH', length),
            ('FOFFSET', 0),
            ('MTYPE', 1),
            ('FPATH', server_path),
            ('SAVENAME', file_name),
        ]

        start_time = time.perf_counter()
        response = self._send('GET', url, 'download', params=params, stream=True, record_ok=False)
        written = 0
        try:
            with open(local_path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=self.DOWNLOAD_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
                        written += len(chunk)
        except requests.RequestException as e:
            self._body_failed('download', start_time, 'transport_error')
            os.remove(local_path)
            logger.error(f"[Download] {file_name}: connection lost after {written} bytes: {e}")
            raise TransportError(f"Download of {file_name} interrupted after {written} bytes: {e}",
                                 details={'url': url, 'written': written}) from e
        except OSError:
            self._body_failed('download', start_time, 'io_error')
            raise
        finally:
            response.close()

        metrics.record_request('download', 'ok', time.perf_counter() - start_time)
        metrics.record_download(written)
        if length and written != length:
            logger.warning(f"[Download] {file_name}: expected {length} bytes, got {written}")
        logger.info(f"[Download] Saved {local_path} ({written} bytes)")
        return local_path

    # =========================================================================
    # GPS Tracking
    # =========================================================================

    def get_track_detail(self, device_id, page: int, page_size: int,
                         start_time: datetime, end_time: datetime) -> TrackDetailPage:
        """Get one page of GPS track records for a device.

        Requesting a page past totalPages yields an empty track list.
        """
        jsession = self._ensure_session()
        url = f"{self.server.base_url}/StandardApiAction_queryTrackDetail.action"
        params = [
            ('jsession', jsession),
            ('devIdno', device_id),
            ('begintime', format_cms_time(start_time, self.server.timezone)),
            ('endtime', format_cms_time(end_time, self.server.timezone)),
            ('currentPage', page),
            ('pageRecords', page_size),
        ]
        data = self._request_json('GET', url, 'queryTrackDetail', params=params)
        return TrackDetailPage.from_dict(data)

    def iter_track_records(self, device_id, start_time: datetime, end_time: datetime,
                           page_size: int = DEFAULT_PAGE_SIZE,
                           max_pages: int = MAX_TRACK_PAGES) -> Iterator[TrackRecord]:
        """Yield every track record in the range, walking pages until totalPages."""
        current_page = 1
        total_pages = 1

        while current_page <= total_pages and current_page <= max_pages:
            page = self.get_track_detail(device_id, current_page, page_size, start_time, end_time)

            if page.result != 0:
                message = get_api_error_message(page.result)
                if current_page == 1:
                    raise CMSResultError(f"Track query for {device_id} failed: {message}",
                                         result=page.result)
                logger.warning(f"[GPS Track] Stopping at page {current_page} for {device_id}: {message}")
                return

            total_pages = page.pagination.total_pages
            yield from page.tracks
            current_page += 1

        if total_pages > max_pages:
            logger.warning(f"[GPS Track] {device_id}: {total_pages} pages available, "
                           f"stopped at max_pages={max_pages}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            'server': self.server.name,
            'requests': self._request_count,
            'errors': self._error_count,
            'authenticated': bool(self.session_id),
        }
