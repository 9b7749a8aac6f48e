"""
CMS Export Entry Point
Exports recorded video segments or dumps GPS track records from a CMSV6 gateway

Usage:
    cmsv6-export export-video --device 10001 --channel 0 \\
        --start "2024-01-31 10:00:00" --end "2024-01-31 10:01:00"

    cmsv6-export tracks --device 10001 \\
        --start "2024-01-31 00:00:00" --end "2024-01-31 23:59:59" --all
"""
import argparse
import json
import logging
import signal
import sys
import threading
from datetime import datetime
from typing import List, Optional

from .cms_client import CMSApiClient, CMSError, CancellationError
from .cms_client.utils import CMS_TIME_FORMAT
from .config import Config
from .export import ExportPoller, FFmpegTranscoder, PollPolicy, VideoExporter
from .logging_config import setup_logging_from_config
from .metrics import start_metrics_server

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130

# Set by SIGINT/SIGTERM; the export poller checks it before each status request
_shutdown_event = threading.Event()


def _handle_shutdown(sig=None, frame=None):
    """Handle shutdown signals"""
    sig_name = signal.Signals(sig).name if sig else "UNKNOWN"
    logger.info(f"Received {sig_name} signal, cancelling...")
    _shutdown_event.set()


def _setup_signal_handlers():
    signal.signal(signal.SIGINT, _handle_shutdown)
    if sys.platform != 'win32':
        signal.signal(signal.SIGTERM, _handle_shutdown)


def _parse_time(value: str) -> datetime:
    try:
        return datetime.strptime(value, CMS_TIME_FORMAT)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected 'YYYY-MM-DD HH:MM:SS', got {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='cmsv6-export',
        description='Export video and GPS tracks from a CMSV6 gateway',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Times are CMS local time, formatted 'YYYY-MM-DD HH:MM:SS'.
Connection settings come from config.json, .env or CMS_* environment variables.
        """
    )
    parser.add_argument('--config', default=None, help='Path to config.json')
    parser.add_argument('--log-level', default=None, help='DEBUG, INFO, WARNING, ERROR')
    parser.add_argument('--metrics-port', type=int, default=None,
                        help='Expose Prometheus metrics on this port')

    sub = parser.add_subparsers(dest='command', required=True)

    video = sub.add_parser('export-video', help='Download and transcode recorded video')
    video.add_argument('--device', required=True, help='Device ID (DevIDNO)')
    video.add_argument('--channel', type=int, default=0, help='Channel number (0-based)')
    video.add_argument('--start', type=_parse_time, required=True)
    video.add_argument('--end', type=_parse_time, required=True)
    video.add_argument('--output-dir', default=None, help='Where downloads are written')

    tracks = sub.add_parser('tracks', help='Print GPS track records as JSON lines')
    tracks.add_argument('--device', required=True, help='Device ID (devIdno)')
    tracks.add_argument('--start', type=_parse_time, required=True)
    tracks.add_argument('--end', type=_parse_time, required=True)
    tracks.add_argument('--page', type=int, default=1)
    tracks.add_argument('--page-size', type=int, default=None)
    tracks.add_argument('--all', action='store_true', help='Walk every page')

    return parser


def run_export_video(client: CMSApiClient, config: dict, args) -> int:
    export_config = config['export']
    exporter = VideoExporter(
        client,
        poller=ExportPoller(client, PollPolicy.from_config(config['polling'])),
        transcoder=FFmpegTranscoder(export_config['transcoder_binary']),
        window_seconds=export_config['window_seconds'],
        output_dir=args.output_dir or export_config['output_dir'],
    )
    exported = exporter.export(args.device, args.channel, args.start, args.end,
                               cancel_event=_shutdown_event)

    failed = [f for f in exported if f.transcoded_path is None]
    logger.info(f"Exported {len(exported)} file(s), {len(failed)} without MP4 copy")
    for f in exported:
        print(f.transcoded_path or f.downloaded_path)
    return EXIT_OK


def run_tracks(client: CMSApiClient, config: dict, args) -> int:
    page_size = args.page_size or config['tracks']['page_size']

    if args.all:
        records = client.iter_track_records(args.device, args.start, args.end,
                                            page_size=page_size,
                                            max_pages=config['tracks']['max_pages'])
    else:
        page = client.get_track_detail(args.device, args.page, page_size, args.start, args.end)
        logger.info(f"Page {page.pagination.current_page} of {page.pagination.total_pages}")
        records = page.tracks

    for record in records:
        print(json.dumps(record.to_dict()))
    return EXIT_OK


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = Config.load(args.config)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_ERROR

    setup_logging_from_config(config, level=args.log_level)
    _setup_signal_handlers()

    metrics_port = args.metrics_port or (
        config['metrics']['port'] if config['metrics']['enabled'] else None)
    if metrics_port:
        start_metrics_server(metrics_port)
        logger.info(f"Metrics exposed on port {metrics_port}")

    commands = {
        'export-video': run_export_video,
        'tracks': run_tracks,
    }

    with CMSApiClient(Config.get_cms_server(config)) as client:
        try:
            return commands[args.command](client, config, args)
        except CancellationError:
            logger.warning("Cancelled")
            return EXIT_CANCELLED
        except CMSError as e:
            logger.error(f"{e.__class__.__name__}: {e.message}")
            return EXIT_ERROR
        except (OSError, ValueError) as e:
            logger.error(f"{e.__class__.__name__}: {e}")
            return EXIT_ERROR


if __name__ == '__main__':
    sys.exit(main())
