"""
Configuration for the treeserve web server.

Turns raw startup parameters into an immutable ServerConfig. Problems an
operator can fix (missing assets, bad ports, unknown backend) are reported
through a ConfigResolution value rather than raised, so the caller decides
whether and how the process exits.
"""

import enum
import os
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Union

from treeserve.core.logging_config import get_logger
from treeserve.core.paths import get_build_dir, get_default_static_dir

logger = get_logger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_HTTP_PORT = 80
DEFAULT_HTTPS_PORT = 443
SOCKET_PATH = "/socket"


class ConfigError(Exception):
    """Base class for configuration problems detected before startup."""


class MissingAssetsError(ConfigError):
    """Raised when the static asset build folder does not exist."""

    def __init__(self, build_dir: str) -> None:
        self.build_dir = build_dir
        super().__init__(
            f"\n    No assets found at {build_dir}!"
            f"\n    Try running `npm run build -- --outdir {build_dir}` first."
            "\n    Or specify where they should be found with --staticDir $somedir.\n"
        )


class UnknownBackendError(ConfigError):
    """Raised when --db names a backend that does not exist."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        known = ", ".join(k.value for k in BackendKind)
        super().__init__(f"Unknown db backend {kind!r} (available: {known})")


class TLSLoadError(OSError):
    """Raised when TLS credentials cannot be loaded."""


class BackendKind(str, enum.Enum):
    MEMORY = "memory"
    SQLITE = "sqlite"

    @classmethod
    def parse(cls, value: str) -> "BackendKind":
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise UnknownBackendError(value) from None


@dataclass(frozen=True)
class BackendConfig:
    kind: BackendKind
    folder: Optional[str] = None
    password: Optional[str] = None


@dataclass(frozen=True)
class PlainTransport:
    port: int


@dataclass(frozen=True)
class TlsTransport:
    port: int
    redirect_port: int
    key_path: str
    cert_path: Optional[str]


TransportMode = Union[PlainTransport, TlsTransport]


@dataclass(frozen=True)
class ServerConfig:
    """
    Resolved server configuration.

    Attributes:
        host: Interface or hostname every listener binds to.
        http_port: Plain listener port (redirect listener when TLS is on).
        https_port: TLS listener port.
        tls_key_path: Private key path; TLS is enabled iff this is set.
        tls_cert_path: Certificate path, required alongside the key.
        static_dir: Absolute root of the served static content.
        backend: Sync persistence backend, or None for no sync endpoint.
        socket_path: Path the sync endpoint is mounted at.
    """

    static_dir: str
    host: str = DEFAULT_HOST
    http_port: int = DEFAULT_HTTP_PORT
    https_port: int = DEFAULT_HTTPS_PORT
    tls_key_path: Optional[str] = None
    tls_cert_path: Optional[str] = None
    backend: Optional[BackendConfig] = None
    socket_path: str = SOCKET_PATH

    @property
    def tls_enabled(self) -> bool:
        return self.tls_key_path is not None

    @property
    def transport(self) -> TransportMode:
        if self.tls_key_path is None:
            return PlainTransport(port=self.http_port)
        return TlsTransport(
            port=self.https_port,
            redirect_port=self.http_port,
            key_path=self.tls_key_path,
            cert_path=self.tls_cert_path,
        )


class ResolutionStatus(enum.Enum):
    RESOLVED = "resolved"
    HELP = "help"
    MISSING_ASSETS = "missing_assets"
    INVALID = "invalid"


@dataclass(frozen=True)
class ConfigResolution:
    """
    Outcome of resolve_config.

    Attributes:
        status: What happened during resolution.
        config: The resolved configuration, only set for RESOLVED.
        message: Operator-facing text for every other status.
    """

    status: ResolutionStatus
    config: Optional[ServerConfig] = None
    message: str = ""

    @property
    def should_start(self) -> bool:
        return self.status is ResolutionStatus.RESOLVED

    @property
    def exit_code(self) -> int:
        if self.status is ResolutionStatus.INVALID:
            return 2
        return 0


def resolve_static_dir(static_dir: Optional[str] = None) -> str:
    """
    Resolves the static content root and checks its asset build folder.

    Args:
        static_dir: User-supplied directory, or None for the default.

    Returns:
        str: Absolute path of the static dir.

    Raises:
        MissingAssetsError: If the build folder beneath it does not exist.
    """
    resolved = os.path.abspath(static_dir or get_default_static_dir())
    build_dir = get_build_dir(resolved)
    if not os.path.exists(build_dir):
        raise MissingAssetsError(build_dir)
    return resolved


def _parse_port(name: str, value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        port = int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"--{name} must be an integer, got {value!r}") from None
    if not 0 < port < 65536:
        raise ConfigError(f"--{name} must be between 1 and 65535, got {port}")
    return port


def _parse_backend(raw: Mapping[str, Any]) -> Optional[BackendConfig]:
    db = raw.get("db")
    if not db:
        return None
    kind = BackendKind.parse(str(db))
    folder = raw.get("dbfolder") or None
    if folder is not None and kind is not BackendKind.SQLITE:
        logger.warning(f"--dbfolder is only used by the sqlite backend, ignoring {folder}")
    return BackendConfig(kind=kind, folder=folder, password=raw.get("password"))


def resolve_config(raw: Mapping[str, Any]) -> ConfigResolution:
    """
    Builds a ServerConfig from raw startup parameters.

    Expected keys mirror the CLI options: help, host, httpport, httpsport,
    sslKey, sslCert, db, dbfolder, password, staticDir. Missing keys take
    their defaults. Port availability is not checked here.

    Args:
        raw: Mapping of option name to raw value.

    Returns:
        ConfigResolution: RESOLVED with a config, or a status explaining why
        no listener should be started.
    """
    if raw.get("help") or raw.get("h"):
        return ConfigResolution(ResolutionStatus.HELP)

    try:
        http_port = _parse_port("httpport", raw.get("httpport"), DEFAULT_HTTP_PORT)
        https_port = _parse_port("httpsport", raw.get("httpsport"), DEFAULT_HTTPS_PORT)
        backend = _parse_backend(raw)
    except ConfigError as e:
        return ConfigResolution(ResolutionStatus.INVALID, message=str(e))

    ssl_key = raw.get("sslKey") or None
    ssl_cert = raw.get("sslCert") or None
    logger.info(f"sslKey: {ssl_key}")
    logger.info(f"sslCert: {ssl_cert}")

    try:
        static_dir = resolve_static_dir(raw.get("staticDir"))
    except MissingAssetsError as e:
        return ConfigResolution(ResolutionStatus.MISSING_ASSETS, message=str(e))

    config = ServerConfig(
        static_dir=static_dir,
        host=raw.get("host") or DEFAULT_HOST,
        http_port=http_port,
        https_port=https_port,
        tls_key_path=ssl_key,
        tls_cert_path=ssl_cert,
        backend=backend,
    )
    return ConfigResolution(ResolutionStatus.RESOLVED, config=config)
