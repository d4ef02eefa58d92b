"""
Django application configuration.

Optionally runs the email outbox dispatcher inside the web process
(outbox.run_in_web). Otherwise run `campus-lostfound dispatch-emails`
from a scheduler.
"""

import logging
import os
import sys
from pathlib import Path

from django.apps import AppConfig
from django.conf import settings

logger = logging.getLogger(__name__)

_SKIP_COMMANDS = ("migrate", "makemigrations", "collectstatic", "shell", "check", "test", "help")

_outbox_worker = None


class WebConfig(AppConfig):
    """Django app configuration for the lost & found API."""

    name = "campus_lostfound.web"
    verbose_name = "Campus Lost & Found API"

    def ready(self):
        # RUN_MAIN is "true" in the autoreload child; neither is set without reload
        run_main = os.environ.get("RUN_MAIN")
        autoreload = os.environ.get("DJANGO_AUTORELOAD")
        should_start = (run_main == "true") or (run_main is None and autoreload is None)

        if should_start:
            self._start_outbox_worker()

    def _start_outbox_worker(self):
        global _outbox_worker

        if _outbox_worker is not None:
            return

        if len(sys.argv) > 1 and sys.argv[1] in _SKIP_COMMANDS:
            logger.info("Skipping outbox worker for management command: %s", sys.argv[1])
            return

        from ..config import load_config
        from ..notifications import EmailOutbox, OutboxWorker
        from .views import get_state_store

        config = load_config(Path(settings.CONFIG_PATH))
        if not config.outbox.run_in_web:
            return

        config.state_db_path = Path(settings.STATE_DB_PATH)
        store = get_state_store(config)
        _outbox_worker = OutboxWorker(
            EmailOutbox(store, config), config.outbox.dispatch_interval_seconds
        )
        _outbox_worker.start()
