"""
qaboard.bootstrap — Process Wiring
===================================

What a host process (web app, desktop shell, script) does once at start:

1. Configure logging.
2. Load ``.env`` (remote URL and key are secrets).
3. Load ``config.yaml`` (soft settings).
4. Pick the backend and build the :class:`BoardService`.

Usage::

    from qaboard.bootstrap import build_service

    service = build_service()
    session = await service.login_user("ana@example.com", "...")
"""

from __future__ import annotations

import logging
from pathlib import Path

from dotenv import load_dotenv

from qaboard.config import load_config
from qaboard.services.board_service import BoardService
from qaboard.store.factory import create_store

logger = logging.getLogger("qaboard")


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s │ %(levelname)-8s │ %(name)s │ %(message)s",
        datefmt="%H:%M:%S",
    )


def build_service(config_path: str | Path = "config.yaml") -> BoardService:
    """Bootstrap a :class:`BoardService` from the environment and *config_path*."""
    configure_logging()
    load_dotenv()

    cfg = load_config(config_path)
    store = create_store(cfg)
    logger.info("QA Board ready (poll every %ss)", cfg.poll_interval_seconds)
    return BoardService(store, poll_interval=cfg.poll_interval_seconds)
