import logging
from dataclasses import dataclass

import httpx

from absence_tracker.config import LineConfig
from absence_tracker.errors import DependencyError
from absence_tracker.models import CaseView

logger = logging.getLogger(__name__)


class NotificationError(DependencyError):
    pass


@dataclass(frozen=True)
class SendResult:
    ok: bool
    skipped: bool = False
    reason: str | None = None


class LineNotifier:
    """Pushes plain-text messages to a LINE group chat."""

    def __init__(
        self, config: LineConfig, transport: httpx.AsyncBaseTransport | None = None
    ) -> None:
        self._config = config
        self._transport = transport

    async def send_to_group(self, text: str) -> SendResult:
        if not self._config.enabled:
            return SendResult(ok=True, skipped=True, reason="LINE_DISABLED")

        token = self._config.channel_access_token
        group_id = self._config.group_id
        if not token or not group_id:
            raise NotificationError(
                "LINE config missing: channel access token or group id"
            )

        async with httpx.AsyncClient(
            transport=self._transport, timeout=self._config.timeout_seconds
        ) as client:
            try:
                response = await client.post(
                    self._config.push_url,
                    headers={"Authorization": f"Bearer {token}"},
                    json={"to": group_id, "messages": [{"type": "text", "text": text}]},
                )
            except httpx.HTTPError as exc:
                raise NotificationError(f"LINE push failed: {exc}") from exc

        if response.is_error:
            raise NotificationError(
                f"LINE push failed: {response.status_code} "
                f"{response.reason_phrase} - {response.text}"
            )
        return SendResult(ok=True)

    async def notify(self, text: str) -> bool:
        """Fire-and-forget send. Failures are logged, never raised."""
        try:
            result = await self.send_to_group(text)
        except NotificationError as exc:
            logger.error("LINE notification failed: %s", exc.reason)
            return False
        return not result.skipped


def case_reported_message(case: CaseView) -> str:
    return (
        f"New absence case: {case.worker_name or case.worker_id} "
        f"({case.team_name or case.team_id}), reason: {case.reason.value}. "
        f"Reported {case.reported_at.strftime('%Y-%m-%d %H:%M')} UTC."
    )


def case_finalized_message(case: CaseView) -> str:
    worker = case.worker_name or case.worker_id
    team = case.team_name or case.team_id
    if case.final_status == "swapped":
        return (
            f"Swap approved for {worker} ({team}): "
            f"{case.replacement_worker_name} starts "
            f"{case.replacement_start_date.isoformat()}."
        )
    return (
        f"Position of {worker} ({team}) declared vacant; "
        f"SLA deadline {case.sla_deadline_at.isoformat()} passed without a replacement."
    )
