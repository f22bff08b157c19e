########################################################################################################################

import typing as T  # isort: split

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import json5

from authtransport import (
    ACCESS_KEY_CONFIGURATION,
    PROJECT_ID_CONFIGURATION,
    SECRET_KEY_CONFIGURATION,
    SECURITY_TOKEN_CONFIGURATION,
    ConfigError,
    Credential,
)

########################################################################################################################

L = logging.getLogger("providerconfig")

HOST_CONFIGURATION = "host"
EXTERNAL_HEADERS_CONFIGURATION = "external_headers"

# option -> environment variable used when the option is not configured
_ENV_DEFAULTS = {
    HOST_CONFIGURATION: "KUBE_HOST",
    ACCESS_KEY_CONFIGURATION: ACCESS_KEY_CONFIGURATION.upper(),
    SECRET_KEY_CONFIGURATION: SECRET_KEY_CONFIGURATION.upper(),
    PROJECT_ID_CONFIGURATION: PROJECT_ID_CONFIGURATION.upper(),
    SECURITY_TOKEN_CONFIGURATION: SECURITY_TOKEN_CONFIGURATION.upper(),
}

_KNOWN_OPTIONS = {*_ENV_DEFAULTS, EXTERNAL_HEADERS_CONFIGURATION}

########################################################################################################################


@dataclass(frozen=True, kw_only=True)
class ProviderConfig:
    host: str = ""
    access_key: str = ""
    secret_key: str = field(default="", repr=False)
    project_id: str = ""
    security_token: str = field(default="", repr=False)
    external_headers: T.Dict[str, str] = field(default_factory=dict)

    def credential(self) -> Credential:
        return Credential(
            access_key=self.access_key,
            secret_key=self.secret_key,
            project_id=self.project_id,
            security_token=self.security_token,
        )


########################################################################################################################


def read_config_file(path: T.Union[str, Path]) -> T.Dict[str, T.Any]:
    """Read a JSON5 provider configuration file."""

    try:
        data = json5.loads(Path(path).read_text(encoding="utf-8"))

    except OSError as exc:
        raise ConfigError(f"Cannot read config file {path}: {exc}") from exc

    except ValueError as exc:
        raise ConfigError(f"Invalid config file {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain an object")

    return data


def _string_option(data: T.Mapping[str, T.Any], name: str, environ: T.Mapping[str, str]) -> str:
    value = data.get(name)
    if value is None:
        return environ.get(_ENV_DEFAULTS[name], "").strip()

    if not isinstance(value, str):
        raise ConfigError(f'"{name}" must be a string')

    return value


def _external_headers(data: T.Mapping[str, T.Any]) -> T.Dict[str, str]:
    raw = data.get(EXTERNAL_HEADERS_CONFIGURATION) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f'"{EXTERNAL_HEADERS_CONFIGURATION}" must be a map of strings')

    headers: T.Dict[str, str] = {}
    for key, value in raw.items():
        if isinstance(value, str):
            headers[key] = value

        else:
            L.warning(f"Ignoring external header '{key}' with non-string value")

    return headers


def load_provider_config(
    path: T.Optional[T.Union[str, Path]] = None,
    environ: T.Optional[T.Mapping[str, str]] = None,
) -> ProviderConfig:
    """
    Load provider configuration.

    Options set in the file win; unset string options fall back to their environment
    variable (HW_ACCESS_KEY, HW_SECRET_KEY, HW_PROJECT_ID, HW_SECURITY_TOKEN, KUBE_HOST),
    then to an empty string.

    Args:
        path: optional JSON5 file with hw_* options, "host" and "external_headers"
        environ: environment mapping, defaults to os.environ

    Raises:
        ConfigError: unreadable file or option of the wrong type
    """

    data = read_config_file(path) if path is not None else {}
    environ = os.environ if environ is None else environ

    for name in sorted(set(data) - _KNOWN_OPTIONS):
        L.warning(f"Ignoring unknown config option '{name}'")

    return ProviderConfig(
        host=_string_option(data, HOST_CONFIGURATION, environ),
        access_key=_string_option(data, ACCESS_KEY_CONFIGURATION, environ),
        secret_key=_string_option(data, SECRET_KEY_CONFIGURATION, environ),
        project_id=_string_option(data, PROJECT_ID_CONFIGURATION, environ),
        security_token=_string_option(data, SECURITY_TOKEN_CONFIGURATION, environ),
        external_headers=_external_headers(data),
    )


########################################################################################################################
