"""
Environment configuration.

All values are read with python-decouple, so they can come from the process
environment or a ``.env``/``settings.ini`` file next to the working directory.
"""

from typing import Optional

from decouple import config

REDIS_URL: str = config("REDIS_URL", default="redis://localhost:6379/0")
STREAM_MAXLEN: int = config("DWN_STREAM_MAXLEN", default=10_000, cast=int)
DATASTORE_DIR: str = config("DWN_DATASTORE_DIR", default=".dwn_datastore")
LOG_LEVEL: str = config("DWN_LOG_LEVEL", default="INFO")


def project_id() -> Optional[str]:
    """Project/namespace scoping every broker resource name, or None if unset."""
    value = config("DWN_PROJECT_ID", default="")
    return value or None
