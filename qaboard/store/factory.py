"""
qaboard.store.factory — Backend Selection
==========================================

Decided once, at construction, never per call:

    1. ``force_local``                   → LocalStore
    2. remote URL or access key missing  → LocalStore (with a warning)
    3. otherwise                         → RemoteStore

A remote backend that is configured but failing is *not* a reason to fall
back; its errors reach the caller.
"""

from __future__ import annotations

import logging

from qaboard.config import BoardConfig
from qaboard.database.engine import create_db_engine, init_db
from qaboard.store.base import Store
from qaboard.store.blob import FileBlobStorage
from qaboard.store.local import LocalStore
from qaboard.store.remote import RemoteStore

logger = logging.getLogger(__name__)


def create_store(cfg: BoardConfig) -> Store:
    if cfg.force_local:
        logger.info("Backend: local document (forced) → %s", cfg.local_store_dir)
        return LocalStore(FileBlobStorage(cfg.local_store_dir))

    if not cfg.remote_configured:
        logger.warning(
            "Remote backend not configured (URL or key missing); "
            "using local document → %s",
            cfg.local_store_dir,
        )
        return LocalStore(FileBlobStorage(cfg.local_store_dir))

    engine = create_db_engine(cfg.remote_url, timeout=cfg.request_timeout_seconds)
    init_db(engine)
    logger.info("Backend: remote database")
    return RemoteStore(
        engine,
        cfg.remote_key,
        request_timeout=cfg.request_timeout_seconds,
        session_ttl_hours=cfg.session_ttl_hours,
    )
