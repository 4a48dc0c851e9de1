"""Slack incoming-webhook notifications for finished and failed runs."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from call_transcribe.errors import ExternalServiceError, PipelineError
from call_transcribe.retry import RetryExecutor, RetryPolicy

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass(slots=True, frozen=True)
class RunSummary:
    """Counts and timings reported for one finished run."""

    run_id: str
    total_files: int
    success_count: int
    failure_count: int
    duration_seconds: float
    error_summary: str = "No errors"
    stopped: bool = False

    @property
    def average_seconds_per_file(self) -> float:
        if self.total_files == 0:
            return 0.0
        return self.duration_seconds / self.total_files


class SlackNotifier:
    """Posts Block Kit messages to one Slack incoming webhook.

    Delivery goes through the retry executor. A message that still cannot be
    delivered is logged and dropped, so notifications never fail a run.
    """

    def __init__(
        self,
        *,
        webhook_url: str,
        executor: RetryExecutor,
        policy: RetryPolicy,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.executor = executor
        self.policy = policy
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def notify_success(self, summary: RunSummary) -> bool:
        title = "Pipeline run stopped" if summary.stopped else "Pipeline run completed"
        if summary.failure_count:
            title = f"{title} with failures"
        message = {
            "text": f"{title}: {summary.success_count}/{summary.total_files} recordings",
            "blocks": [
                _header(title),
                {
                    "type": "section",
                    "fields": [
                        _field("Total Files", summary.total_files),
                        _field("Success", summary.success_count),
                        _field("Failed", summary.failure_count),
                        _field("Duration", format_duration(summary.duration_seconds)),
                        _field(
                            "Avg Time/File",
                            format_duration(summary.average_seconds_per_file),
                        ),
                    ],
                },
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": f"*Errors:*\n```{summary.error_summary}```",
                    },
                },
                _context(f"Run {summary.run_id} completed at {_now()}"),
            ],
        }
        return self._send(message)

    def notify_failure(self, error: BaseException, context: dict[str, object]) -> bool:
        detail = _describe(error)
        message = {
            "text": f"Pipeline run failed: {detail}",
            "blocks": [
                _header("Pipeline run failed"),
                {
                    "type": "section",
                    "text": {"type": "mrkdwn", "text": f"*Error:* {detail}"},
                },
                {
                    "type": "section",
                    "text": {
                        "type": "mrkdwn",
                        "text": (
                            "*Context:*\n```"
                            f"{json.dumps(context, indent=2, default=str)}```"
                        ),
                    },
                },
                _context(f"Failed at {_now()}"),
            ],
        }
        return self._send(message)

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> SlackNotifier:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _send(self, message: dict[str, object]) -> bool:
        try:
            self.executor.execute(lambda: self._post(message), self.policy, "slack notification")
        except PipelineError as error:
            logger.error("Failed to send Slack notification: [%s] %s", error.code, error)
            return False
        logger.debug("Slack notification sent")
        return True

    def _post(self, message: dict[str, object]) -> None:
        try:
            response = self._client.post(self.webhook_url, json=message)
        except httpx.HTTPError as error:
            raise ExternalServiceError.from_failure(
                service="notification",
                operation="send",
                cause=error,
                code="notification_failed",
            ) from error
        if not response.is_success:
            raise ExternalServiceError.from_failure(
                service="notification",
                operation="send",
                cause=f"HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
                code="notification_failed",
            )


def format_duration(seconds: float) -> str:
    """Render seconds as ``1h 2m 3s``, ``2m 3s`` or ``3s``."""

    total = int(seconds)
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def _describe(error: BaseException) -> str:
    if isinstance(error, PipelineError):
        return f"[{error.code}] {error}"
    return f"{type(error).__name__}: {error}"


def _header(text: str) -> dict[str, object]:
    return {"type": "header", "text": {"type": "plain_text", "text": text}}


def _field(label: str, value: object) -> dict[str, str]:
    return {"type": "mrkdwn", "text": f"*{label}:*\n{value}"}


def _context(text: str) -> dict[str, object]:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": f"_{text}_"}]}


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()
