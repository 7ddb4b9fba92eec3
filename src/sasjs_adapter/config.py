# SASjs Python Adapter
# File: config.py
# Version: v2

"""Configuration loading for the SASjs adapter."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import os


class ServerType(str, Enum):
    """The two SAS server flavours the adapter can talk to."""

    SAS9 = "SAS9"
    SASVIYA = "SASVIYA"


def _parse_bool_env(name: str, default: bool = False) -> bool:
    """Parse a boolean-like environment variable.

    Accepts 1/0, true/false, yes/no, on/off (case-insensitive).
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def _parse_float_env(
    name: str,
    default: float,
    min_value: float | None = None,
) -> float:
    """Parse a float environment variable with clamping and safe fallback."""
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        value = float(default)
    else:
        try:
            value = float(str(raw).strip())
        except ValueError:
            value = float(default)

    if min_value is not None and value < min_value:
        value = min_value

    return value


def _parse_server_type(raw: str | None, default: ServerType) -> ServerType:
    if raw is None or not raw.strip():
        return default
    normalised = raw.strip().upper().replace("_", "").replace("-", "")
    if normalised in {"SAS9", "9"}:
        return ServerType.SAS9
    if normalised in {"SASVIYA", "VIYA"}:
        return ServerType.SASVIYA
    raise ValueError(
        f"Unknown SASJS_SERVER_TYPE '{raw}'. Expected SAS9 or SASVIYA."
    )


@dataclass
class SASjsConfig:
    """Configuration values required to talk to a SAS server.

    Only ``server_url`` has no usable default. The job paths and ``app_loc``
    default to the stock SAS9 / Viya locations.
    """

    server_url: str = ""
    path_sas9: str = "/SASStoredProcess/do"
    path_sas_viya: str = "/SASJobExecution"
    app_loc: str = "/Public/seedapp"
    server_type: ServerType = ServerType.SASVIYA
    debug: bool = True

    # transport
    verify_tls: bool = True
    timeout_seconds: float = 60.0

    # compute job polling
    poll_interval_seconds: float = 3.0

    @property
    def jobs_path(self) -> str:
        if self.server_type == ServerType.SASVIYA:
            return self.path_sas_viya
        return self.path_sas9

    @property
    def logout_path(self) -> str:
        if self.server_type == ServerType.SAS9:
            return "/SASLogon/logout?"
        return "/SASLogon/logout.do?"

    @classmethod
    def from_env(cls) -> "SASjsConfig":
        """Create configuration from environment variables."""
        defaults = cls()

        return cls(
            server_url=os.getenv("SASJS_SERVER_URL", defaults.server_url),
            path_sas9=os.getenv("SASJS_PATH_SAS9", defaults.path_sas9),
            path_sas_viya=os.getenv("SASJS_PATH_SASVIYA", defaults.path_sas_viya),
            app_loc=os.getenv("SASJS_APP_LOC", defaults.app_loc),
            server_type=_parse_server_type(
                os.getenv("SASJS_SERVER_TYPE"), defaults.server_type
            ),
            debug=_parse_bool_env("SASJS_DEBUG", default=defaults.debug),
            verify_tls=_parse_bool_env("SASJS_VERIFY_TLS", default=True),
            timeout_seconds=_parse_float_env(
                "SASJS_TIMEOUT_SECONDS", default=60.0, min_value=1.0
            ),
            poll_interval_seconds=_parse_float_env(
                "SASJS_POLL_INTERVAL_SECONDS", default=3.0, min_value=0.0
            ),
        )
