"""Fire-and-forget helpers for work that must never block or fail a request."""
import logging
import threading

from django.conf import settings
from django.db import transaction

logger = logging.getLogger(__name__)


def run_detached(fn, *args, **kwargs) -> None:
    """Run ``fn`` on a daemon thread; exceptions are logged, never raised."""
    name = getattr(fn, "__name__", repr(fn))

    def _run():
        try:
            fn(*args, **kwargs)
        except Exception:
            logger.exception("Background task %s failed", name)

    if getattr(settings, "NOTIFICATIONS_RUN_INLINE", False):
        _run()
        return
    threading.Thread(target=_run, name=f"task-{name}", daemon=True).start()


def dispatch_after_commit(fn, *args, **kwargs) -> None:
    """Schedule ``fn`` once the surrounding transaction commits."""
    transaction.on_commit(lambda: run_detached(fn, *args, **kwargs))
