"""Runtime context shared by the HTTP entrypoints."""

import threading
from datetime import datetime, timezone
from typing import Callable, Optional

from nptma.config import Settings, load_settings
from nptma.database.database import Database
from nptma.database.user_repository import UserRepository
from nptma.integrations.telegram import LeadNotifier, build_lead_notifier

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Runtime:
    """Settings plus the collaborators a request needs.

    Tests swap in an in-memory database, a fake notifier and a fixed clock.
    """

    def __init__(
        self,
        settings: Settings,
        database: Optional[Database] = None,
        notifier: Optional[LeadNotifier] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings
        self.database = database or Database(settings)
        self.notifier = notifier or build_lead_notifier(
            settings.bot_token, settings.owner_chat_id, settings.telegram_api_base
        )
        self.clock = clock or utc_now

    def user_repository(self) -> UserRepository:
        return UserRepository(self.database.engine, self.database.table)


_runtime: Optional[Runtime] = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Process-wide runtime, built from the environment on first use."""
    global _runtime
    if _runtime is None:
        with _runtime_lock:
            if _runtime is None:
                _runtime = Runtime(load_settings())
    return _runtime


def set_runtime(runtime: Optional[Runtime]) -> None:
    """Replace (or clear) the process-wide runtime."""
    global _runtime
    with _runtime_lock:
        _runtime = runtime
