"""Runtime settings for the flowsync backend."""

import os
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "FLOWSYNC_"

DEFAULT_DIAGRAM = """graph TD
  A[Start] --> B[Process]
  B --> C[End]"""


class SyncSettings(BaseModel):
    """Settings shared by the store, the converters and the server."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    #: Template text loaded when a document is opened.
    default_diagram: str = DEFAULT_DIAGRAM
    #: Number of history entries kept (unbounded when unset); the oldest is dropped first.
    max_history: Optional[int] = Field(default=None, ge=1)
    #: Quiet period (seconds) after a canvas edit before it is converted to text.
    debounce_delay: float = Field(default=0.3, ge=0)
    #: Wait (seconds) before retrying when another parse is in flight.
    parse_retry_delay: float = Field(default=0.05, ge=0)
    #: Wait (seconds) after a render before the canvas is reported ready.
    settle_delay: float = Field(default=0.3, ge=0)
    host: str = "127.0.0.1"
    port: int = 8765
    log_level: str = "INFO"


def load_settings(environ: Optional[Mapping[str, str]] = None, **overrides) -> SyncSettings:
    """
    Build settings from `FLOWSYNC_*` environment variables.

    Keyword overrides win over the environment.
    """
    environ = os.environ if environ is None else environ
    values = {}
    for name in SyncSettings.model_fields:
        key = f"{ENV_PREFIX}{name.upper()}"
        if key in environ:
            values[name] = environ[key]
    values.update(overrides)
    return SyncSettings(**values)
