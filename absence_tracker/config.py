import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from dotenv import load_dotenv

LINE_PUSH_URL = "https://api.line.me/v2/bot/message/push"


@dataclass(frozen=True)
class LineConfig:
    enabled: bool = False
    channel_access_token: str | None = None
    channel_secret: str | None = None
    group_id: str | None = None
    push_url: str = LINE_PUSH_URL
    timeout_seconds: float = 10.0


@dataclass(frozen=True)
class Settings:
    sla_business_days: int = 3
    dashboard_case_limit: int = 200
    # Document scopes a Receive must include, e.g. ("INTERNAL", "TO_DISTRICT")
    receive_required_scopes: tuple[str, ...] = ()
    log_level: str = "INFO"
    load_sample_data: bool = False
    line: LineConfig = field(default_factory=LineConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        if environ is None:
            load_dotenv()
            environ = os.environ

        scopes = environ.get("RECEIVE_REQUIRED_SCOPES", "")
        return cls(
            sla_business_days=int(environ.get("SLA_BUSINESS_DAYS", "3")),
            dashboard_case_limit=int(environ.get("DASHBOARD_CASE_LIMIT", "200")),
            receive_required_scopes=tuple(
                s.strip().upper() for s in scopes.split(",") if s.strip()
            ),
            log_level=environ.get("LOG_LEVEL", "INFO").upper(),
            load_sample_data=_flag(environ.get("LOAD_SAMPLE_DATA")),
            line=LineConfig(
                enabled=_flag(environ.get("LINE_ENABLED")),
                channel_access_token=environ.get("LINE_CHANNEL_ACCESS_TOKEN"),
                channel_secret=environ.get("LINE_CHANNEL_SECRET"),
                group_id=environ.get("LINE_GROUP_ID"),
                push_url=environ.get("LINE_PUSH_URL", LINE_PUSH_URL),
            ),
        )


def _flag(value: str | None) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes")
