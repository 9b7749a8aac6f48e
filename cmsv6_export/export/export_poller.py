"""
Export Job Poller
Waits for a server-side export task to finish, with exponential backoff
"""
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .. import metrics
from ..cms_client.cms_api import CMSApiClient
from ..cms_client.errors import CancellationError, ExportJobFailedError, ExportTimeoutError
from ..cms_client.models import DownloadTaskResult
from ..cms_client.utils import get_api_error_message

logger = logging.getLogger(__name__)


@dataclass
class PollPolicy:
    """Backoff settings for export polling.

    The defaults wait 180s before the first status check and double the
    delay after every 'not ready' answer with no upper bound.
    """
    initial_delay: float = 180.0
    exponential_base: float = 2.0
    max_delay: Optional[float] = None
    max_attempts: Optional[int] = None
    timeout: Optional[float] = None
    unknown_result_is_failure: bool = True

    def delay_for(self, attempt: int) -> float:
        """Delay before the given status request (1-based)."""
        delay = self.initial_delay * (self.exponential_base ** (attempt - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        return delay

    @classmethod
    def from_config(cls, polling: Dict[str, Any]) -> 'PollPolicy':
        return cls(
            initial_delay=float(polling.get('initial_delay_seconds') or 180),
            max_delay=polling.get('max_delay_seconds'),
            max_attempts=polling.get('max_attempts'),
            timeout=polling.get('timeout_seconds'),
            unknown_result_is_failure=polling.get('unknown_result_is_failure', True),
        )


class ExportPoller:
    """
    Polls an export task until it reports ready.

    Each iteration checks the cancel event and the limits, sleeps the
    current delay (never past the deadline), checks the cancel event
    again, then issues one status request. Result 0 means the
    job is still processing and the delay grows; 11 means ready. Any other
    code ends the job as failed unless the policy treats it as pending.
    """

    def __init__(self, client: CMSApiClient, policy: Optional[PollPolicy] = None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        self.client = client
        self.policy = policy or PollPolicy()
        self._sleep = sleep
        self._clock = clock

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], attempts: int):
        if cancel_event is not None and cancel_event.is_set():
            logger.info(f"Export poll cancelled after {attempts} status request(s)")
            raise CancellationError("Export poll cancelled", details={'attempts': attempts})

    def wait_until_ready(self, task_url: str,
                         cancel_event: Optional[threading.Event] = None) -> DownloadTaskResult:
        """Block until the export task is ready.

        Raises:
            CancellationError: cancel_event was set before a status request
            ExportTimeoutError: max_attempts or the timeout was exceeded
            ExportJobFailedError: the task reported a failure code
        """
        policy = self.policy
        deadline = self._clock() + policy.timeout if policy.timeout is not None else None
        attempt = 0

        while True:
            self._check_cancelled(cancel_event, attempt)

            if deadline is not None and self._clock() >= deadline:
                raise ExportTimeoutError(
                    f"Export task not ready after {policy.timeout}s",
                    details={'attempts': attempt},
                )
            if policy.max_attempts is not None and attempt >= policy.max_attempts:
                raise ExportTimeoutError(
                    f"Export task not ready after {attempt} status request(s)",
                    details={'attempts': attempt},
                )

            attempt += 1
            delay = policy.delay_for(attempt)
            if deadline is not None:
                delay = min(delay, max(deadline - self._clock(), 0.0))
            logger.debug(f"Waiting {delay:.0f}s before export status request #{attempt}")
            self._sleep(delay)
            self._check_cancelled(cancel_event, attempt - 1)

            task = self.client.get_download_task(task_url)

            if task.is_ready:
                metrics.record_export_poll('ready')
                logger.info(f"Export task ready after {attempt} status request(s)",
                            extra={"attempt": attempt, "file": task.file_path})
                return task

            if task.is_pending:
                metrics.record_export_poll('pending')
                continue

            if policy.unknown_result_is_failure:
                metrics.record_export_poll('failed')
                raise ExportJobFailedError(
                    f"Export task failed: {get_api_error_message(task.result)}",
                    result=task.result,
                    details={'attempts': attempt},
                )

            metrics.record_export_poll('unknown')
            logger.warning(f"Export task returned result={task.result}, treating as not ready",
                           extra={"attempt": attempt})
