from __future__ import annotations

import atexit
import contextlib
import io

from dbos import DBOS, DBOSConfig

from vectorpool.db import DatabaseClient

_dbos_initialized = False


def _dbos_has_instance() -> bool:
    try:
        import dbos._dbos as dbos_module

        instance = getattr(dbos_module, "_dbos_global_instance", None)
        return instance is not None and getattr(instance, "_initialized", False)
    except Exception:
        return False


def init_dbos(client: DatabaseClient, *, name: str = "vectorpool") -> None:
    """
    Initialize DBOS on the same database as the plugin tables.
    """
    global _dbos_initialized

    if _dbos_initialized or _dbos_has_instance():
        _dbos_initialized = True
        return

    client.init_database()

    config = DBOSConfig(
        name=name,
        database_url=client.get_database_url(),
        log_level="ERROR",
        run_admin_server=False,
    )

    try:
        with contextlib.redirect_stdout(io.StringIO()), contextlib.redirect_stderr(io.StringIO()):
            DBOS(config=config)
            DBOS.launch()
        _dbos_initialized = True
    except Exception as exc:
        if "already" in str(exc).lower():
            _dbos_initialized = True
        else:
            raise

    atexit.register(destroy_dbos)


def destroy_dbos() -> None:
    """Best-effort cleanup for DBOS."""
    global _dbos_initialized

    try:
        DBOS.destroy(workflow_completion_timeout_sec=0)
    except Exception:
        pass
    _dbos_initialized = False
