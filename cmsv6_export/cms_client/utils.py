"""
CMS Client Utility Functions
Shared helpers for coordinate conversion, CMS time handling and URL building
"""
import os
import re
from datetime import datetime, timezone, timedelta
from typing import Any, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit, parse_qs


# ============================================================================
# Constants
# ============================================================================

COORDINATE_DIVISOR = 1000000.0
SPEED_DIVISOR = 10.0

CMS_TIME_FORMAT = '%Y-%m-%d %H:%M:%S'

# Parameters the export status endpoint accepts, in the order they are sent
DOWNLOAD_TASK_PARAMS: Tuple[str, ...] = (
    'jsession', 'did', 'fbtm', 'fetm', 'sbtm', 'setm',
    'fph', 'vtp', 'len', 'chn', 'dtp',
)

API_ERROR_MESSAGES = {
    1: 'Invalid parameter',
    2: 'Device not found or no permission',
    3: 'Session expired',
    19: 'Device not found, offline, or no permission to access',
    100: 'System error'
}


# ============================================================================
# Coordinate / Data Conversion
# ============================================================================

def convert_coordinate(value: Any) -> float:
    """Convert CMS coordinate to decimal degrees.

    CMS API returns coordinates in two formats:
    - Raw integers (e.g., 113827278) that need division by 1,000,000
    - Already converted decimals (e.g., 113.827278)
    """
    if value is None:
        return 0.0
    try:
        val = float(value)
        if abs(val) > 1000:
            return val / COORDINATE_DIVISOR
        return val
    except (ValueError, TypeError):
        return 0.0


def convert_speed(raw_speed: Any) -> float:
    """Convert raw speed value to km/h (CMS returns speed * 10)."""
    try:
        return float(raw_speed or 0) / SPEED_DIVISOR
    except (ValueError, TypeError):
        return 0.0


def parse_acc_status(s1_value: int) -> bool:
    """Parse ACC (ignition) status from s1 field. Bit 0 is ACC status."""
    return (int(s1_value or 0) & 0x01) == 1


def safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(float(value)) if value not in (None, '') else default
    except (ValueError, TypeError):
        return default


def get_api_error_message(code: int) -> str:
    """Get human-readable API error message for a vendor result code."""
    return API_ERROR_MESSAGES.get(code, f'API error (code: {code})')


# ============================================================================
# Time Conversion
# ============================================================================

def parse_cms_timezone(tz_str: str) -> timezone:
    """Parse timezone offset string like '+05:00' or '-05:30' to timezone object."""
    try:
        sign = 1 if tz_str[0] == '+' else -1
        parts = tz_str[1:].split(':')
        hours = int(parts[0])
        minutes = int(parts[1]) if len(parts) > 1 else 0
        offset = timedelta(hours=sign * hours, minutes=sign * minutes)
        return timezone(offset)
    except (ValueError, IndexError, TypeError):
        return timezone.utc


def to_cms_local(dt: datetime, tz_str: str) -> datetime:
    """Convert a datetime to naive CMS local time.

    Timezone-aware datetimes are shifted into the CMS timezone. Naive
    datetimes are taken to already be in CMS local time.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(parse_cms_timezone(tz_str)).replace(tzinfo=None)


def format_cms_time(dt: datetime, tz_str: str = '+00:00') -> str:
    """Format a datetime as "YYYY-MM-DD HH:MM:SS" in CMS local time."""
    return to_cms_local(dt, tz_str).strftime(CMS_TIME_FORMAT)


def seconds_in_day(dt: datetime) -> int:
    """Seconds since midnight, as used by the video file BEG/END parameters."""
    return dt.hour * 3600 + dt.minute * 60 + dt.second


def parse_cms_time(value: Any) -> Optional[datetime]:
    """Parse a CMS timestamp string ("2024-01-31 10:30:00.0") to a naive datetime."""
    if not value or not isinstance(value, str):
        return None
    value_clean = value.strip()
    if '.' in value_clean:
        value_clean = value_clean.split('.')[0]
    for fmt in (CMS_TIME_FORMAT, '%Y-%m-%dT%H:%M:%S', '%Y/%m/%d %H:%M:%S'):
        try:
            return datetime.strptime(value_clean, fmt)
        except ValueError:
            continue
    return None


# ============================================================================
# URL / Path Helpers
# ============================================================================

def split_download_task_url(url: str, session_id: str) -> Tuple[str, List[Tuple[str, str]]]:
    """Split a DownTaskUrl into its base URL and the allow-listed query params.

    Only parameters the export status endpoint understands are kept.
    jsession falls back to the current session when the URL lacks one.

    Returns:
        Tuple of (base URL without query, ordered list of (name, value))
    """
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        raise ValueError(f"Not an absolute export task URL: {url!r}")

    query = parse_qs(parts.query, keep_blank_values=True)
    params = []
    for name in DOWNLOAD_TASK_PARAMS:
        values = query.get(name)
        if values:
            params.append((name, values[0]))
        elif name == 'jsession' and session_id:
            params.append((name, session_id))

    base_url = urlunsplit((parts.scheme, parts.netloc, parts.path, '', ''))
    return base_url, params


def server_file_name(server_path: str) -> str:
    """Last path segment of a vendor storage path.

    DVR paths may use either separator. The name must be a plain file
    name so the download can never be written outside its directory.
    """
    name = re.split(r'[\\/]', server_path or '')[-1].strip()
    if name in ('', '.', '..'):
        raise ValueError(f"Server path has no usable file name: {server_path!r}")
    return name


def local_download_path(server_path: str, output_dir: Optional[str] = None) -> str:
    """Local path for a downloaded server file inside output_dir."""
    name = server_file_name(server_path)
    return os.path.join(output_dir, name) if output_dir else name
