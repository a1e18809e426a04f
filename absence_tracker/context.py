from __future__ import annotations

from dataclasses import dataclass, field

from absence_tracker.business_days import Clock, utc_now
from absence_tracker.config import Settings
from absence_tracker.dashboard import DashboardAggregator
from absence_tracker.database import Database, load_sample_data
from absence_tracker.documents import DocumentArchive
from absence_tracker.notifier import LineNotifier
from absence_tracker.roster import RosterService
from absence_tracker.workflow import CaseWorkflow


@dataclass
class AppContext:
    """Everything a request needs, built once per app instead of per module."""

    settings: Settings = field(default_factory=Settings)
    db: Database = field(default_factory=Database)
    clock: Clock = utc_now
    notifier: LineNotifier | None = None
    archive: DocumentArchive | None = None

    def __post_init__(self) -> None:
        if self.notifier is None:
            self.notifier = LineNotifier(self.settings.line)
        if self.archive is None:
            self.archive = DocumentArchive(self.db, self.clock)
        self.workflow = CaseWorkflow(self.db, self.settings, self.clock)
        self.dashboard = DashboardAggregator(self.db, self.settings, self.clock)
        self.roster = RosterService(self.db, self.clock)

    @classmethod
    def from_env(cls) -> AppContext:
        settings = Settings.from_env()
        db = Database()
        if settings.load_sample_data:
            load_sample_data(db)
        return cls(settings=settings, db=db)
