"""
Video Transcoder
Converts downloaded CMS recordings into an MP4 container with an external tool
"""
import logging
import os
import subprocess
from abc import ABC, abstractmethod
from typing import Optional

from .. import metrics
from ..cms_client.errors import TranscodeError

logger = logging.getLogger(__name__)


class Transcoder(ABC):
    """Converts a local video file and returns the path of the new file"""

    @abstractmethod
    def convert(self, input_path: str) -> str:
        """Raise TranscodeError when conversion fails."""


class FFmpegTranscoder(Transcoder):
    """
    Runs ``<binary> -i <input> <basename>.mp4`` in the input file's directory.
    """

    OUTPUT_EXTENSION = '.mp4'

    def __init__(self, binary: str = 'ffmpeg', timeout: Optional[float] = None):
        self.binary = binary
        self.timeout = timeout

    def output_name(self, input_path: str) -> str:
        stem, _ = os.path.splitext(os.path.basename(input_path))
        return stem + self.OUTPUT_EXTENSION

    def build_command(self, input_path: str) -> list:
        return [self.binary, '-i', os.path.basename(input_path), self.output_name(input_path)]

    def convert(self, input_path: str) -> str:
        work_dir = os.path.dirname(input_path) or None
        cmd = self.build_command(input_path)
        logger.debug(f"Running transcoder: {' '.join(cmd)}")

        try:
            res = subprocess.run(cmd, cwd=work_dir, stdout=subprocess.PIPE,
                                 stderr=subprocess.PIPE, timeout=self.timeout)
        except FileNotFoundError as e:
            metrics.record_transcode('failed')
            raise TranscodeError(f'Transcoder "{self.binary}" not found on PATH',
                                 input_path=input_path) from e
        except OSError as e:
            metrics.record_transcode('failed')
            raise TranscodeError(f'Transcoder "{self.binary}" could not be started: {e}',
                                 input_path=input_path) from e
        except subprocess.TimeoutExpired as e:
            metrics.record_transcode('failed')
            raise TranscodeError(f"Transcoder timed out after {self.timeout}s",
                                 input_path=input_path) from e

        if res.returncode != 0:
            metrics.record_transcode('failed')
            stderr = res.stderr.decode(errors='ignore')[:400] if res.stderr else ''
            raise TranscodeError(f"Transcoder exited with code {res.returncode}",
                                 input_path=input_path, stderr=stderr)

        metrics.record_transcode('ok')
        output_path = os.path.join(os.path.dirname(input_path), self.output_name(input_path))
        logger.info(f"Transcoded to {output_path}", extra={"file": input_path})
        return output_path
