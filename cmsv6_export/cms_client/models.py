"""
CMS API Response Models
Typed views over the JSON bodies returned by the CMSV6 gateway
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from .utils import (
    convert_coordinate,
    convert_speed,
    parse_acc_status,
    parse_cms_time,
    safe_int,
)

# Export task status codes reported by StandardApiAction download tasks
TASK_STATUS_PENDING = 0
TASK_STATUS_READY = 11


@dataclass
class ExportTask:
    """One export candidate returned by the video file lookup"""
    down_task_url: str
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ExportTask':
        return cls(down_task_url=data.get('DownTaskUrl') or '', raw=data)


@dataclass
class VideoFileInfo:
    result: int
    files: List[ExportTask] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'VideoFileInfo':
        # Some gateway builds return 'files', and some return it keyed by index
        files = data.get('Files')
        if files is None:
            files = data.get('files')
        if isinstance(files, dict):
            files = list(files.values())
        return cls(
            result=safe_int(data.get('result')),
            files=[ExportTask.from_dict(f) for f in (files or []) if isinstance(f, dict)],
        )


@dataclass
class DownloadTaskResult:
    """Status of a server-side export job"""
    result: int
    file_path: str = ''
    length: int = 0

    @property
    def is_ready(self) -> bool:
        return self.result == TASK_STATUS_READY

    @property
    def is_pending(self) -> bool:
        return self.result == TASK_STATUS_PENDING

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DownloadTaskResult':
        task = data.get('oldTaskAll') or {}
        return cls(
            result=safe_int(data.get('result')),
            file_path=task.get('dph') or '',
            length=safe_int(task.get('len')),
        )


@dataclass
class TrackRecord:
    """Single GPS sample from queryTrackDetail"""
    id: str
    lng: int
    lat: int
    speed: int
    status_register_1: int
    time: str

    @property
    def latitude(self) -> float:
        return convert_coordinate(self.lat)

    @property
    def longitude(self) -> float:
        return convert_coordinate(self.lng)

    @property
    def speed_kmh(self) -> float:
        return convert_speed(self.speed)

    @property
    def acc_on(self) -> bool:
        return parse_acc_status(self.status_register_1)

    @property
    def gps_time(self) -> Optional[datetime]:
        return parse_cms_time(self.time)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrackRecord':
        return cls(
            id=str(data.get('id') or ''),
            lng=safe_int(data.get('lng')),
            lat=safe_int(data.get('lat')),
            speed=safe_int(data.get('sp')),
            status_register_1=safe_int(data.get('s1')),
            time=data.get('gt') or '',
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'lat': self.latitude,
            'lng': self.longitude,
            'speed': self.speed_kmh,
            'accOn': self.acc_on,
            's1': self.status_register_1,
            'gpsTime': self.time,
        }


@dataclass
class Pagination:
    current_page: int = 1
    total_pages: int = 1
    page_records: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Pagination':
        return cls(
            current_page=safe_int(data.get('currentPage'), 1),
            total_pages=safe_int(data.get('totalPages'), 1),
            page_records=safe_int(data.get('pageRecords')),
        )


@dataclass
class TrackDetailPage:
    result: int
    pagination: Pagination
    tracks: List[TrackRecord] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TrackDetailPage':
        # Older gateways put the paging fields at the top level
        paging = data.get('pagination')
        if not isinstance(paging, dict):
            paging = data
        return cls(
            result=safe_int(data.get('result')),
            pagination=Pagination.from_dict(paging),
            tracks=[TrackRecord.from_dict(t) for t in (data.get('tracks') or []) if isinstance(t, dict)],
        )


@dataclass
class ExportedFile:
    """A video segment fetched from the gateway"""
    device_id: str
    channel: int
    window_start: datetime
    downloaded_path: str
    transcoded_path: Optional[str] = None
