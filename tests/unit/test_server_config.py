"""
Tests for configuration resolution.
"""
import os
from dataclasses import FrozenInstanceError

import pytest

from treeserve.webserver.config import (
    BackendConfig,
    BackendKind,
    MissingAssetsError,
    PlainTransport,
    ResolutionStatus,
    ServerConfig,
    TlsTransport,
    UnknownBackendError,
    resolve_config,
    resolve_static_dir,
)


@pytest.mark.unit
def test_defaults(static_dir):
    resolution = resolve_config({"staticDir": str(static_dir)})

    assert resolution.status is ResolutionStatus.RESOLVED
    assert resolution.should_start
    config = resolution.config
    assert config.host == "localhost"
    assert config.http_port == 80
    assert config.https_port == 443
    assert config.tls_key_path is None
    assert config.backend is None
    assert config.socket_path == "/socket"
    assert config.static_dir == os.path.abspath(str(static_dir))


@pytest.mark.unit
def test_help_short_circuits_validation(tmp_path):
    # Nothing else is valid here, help must still win
    raw = {
        "help": True,
        "staticDir": str(tmp_path / "missing"),
        "httpport": "not-a-port",
        "db": "mongo",
    }
    resolution = resolve_config(raw)

    assert resolution.status is ResolutionStatus.HELP
    assert resolution.exit_code == 0
    assert resolution.config is None
    assert not resolution.should_start


@pytest.mark.unit
def test_short_help_flag(tmp_path):
    assert resolve_config({"h": True}).status is ResolutionStatus.HELP


@pytest.mark.unit
def test_missing_assets_is_a_clean_abort(tmp_path):
    (tmp_path / "static").mkdir()
    resolution = resolve_config({"staticDir": str(tmp_path / "static")})

    assert resolution.status is ResolutionStatus.MISSING_ASSETS
    assert resolution.exit_code == 0
    assert resolution.config is None
    assert "No assets found at" in resolution.message
    assert "--staticDir" in resolution.message
    assert os.path.join(str(tmp_path / "static"), "build") in resolution.message


@pytest.mark.unit
def test_resolve_static_dir_raises(tmp_path):
    with pytest.raises(MissingAssetsError) as e:
        resolve_static_dir(str(tmp_path))
    assert e.value.build_dir == os.path.join(str(tmp_path), "build")


@pytest.mark.unit
def test_resolve_static_dir_makes_path_absolute(static_dir, monkeypatch):
    monkeypatch.chdir(static_dir.parent)
    assert resolve_static_dir("static") == str(static_dir)


@pytest.mark.unit
def test_ports_are_parsed(static_dir):
    resolution = resolve_config(
        {"staticDir": str(static_dir), "httpport": "8080", "httpsport": 8443}
    )
    assert resolution.config.http_port == 8080
    assert resolution.config.https_port == 8443


@pytest.mark.unit
@pytest.mark.parametrize("port", ["0", "70000", "http", "-1"])
def test_invalid_port(static_dir, port):
    resolution = resolve_config({"staticDir": str(static_dir), "httpport": port})

    assert resolution.status is ResolutionStatus.INVALID
    assert resolution.exit_code == 2
    assert "httpport" in resolution.message


@pytest.mark.unit
def test_backend_values_are_kept_verbatim(static_dir, tmp_path):
    resolution = resolve_config(
        {
            "staticDir": str(static_dir),
            "db": "sqlite",
            "dbfolder": str(tmp_path / "data"),
            "password": " s3cret ",
        }
    )
    backend = resolution.config.backend
    assert backend == BackendConfig(
        kind=BackendKind.SQLITE, folder=str(tmp_path / "data"), password=" s3cret "
    )


@pytest.mark.unit
def test_backend_kind_is_case_insensitive(static_dir):
    resolution = resolve_config({"staticDir": str(static_dir), "db": "Memory"})
    assert resolution.config.backend.kind is BackendKind.MEMORY


@pytest.mark.unit
def test_unknown_backend_is_rejected(static_dir):
    resolution = resolve_config({"staticDir": str(static_dir), "db": "mongo"})

    assert resolution.status is ResolutionStatus.INVALID
    assert "mongo" in resolution.message


@pytest.mark.unit
def test_backend_kind_parse_error():
    with pytest.raises(UnknownBackendError) as e:
        BackendKind.parse("postgres")
    assert e.value.kind == "postgres"
    assert "sqlite" in str(e.value)


@pytest.mark.unit
def test_dbfolder_kept_but_warned_for_memory_backend(static_dir, caplog):
    resolution = resolve_config(
        {"staticDir": str(static_dir), "db": "memory", "dbfolder": "/tmp/x"}
    )
    assert resolution.config.backend.folder == "/tmp/x"
    assert "only used by the sqlite backend" in caplog.text


@pytest.mark.unit
def test_transport_plain(static_dir):
    config = ServerConfig(static_dir=str(static_dir), http_port=8080)
    assert not config.tls_enabled
    assert config.transport == PlainTransport(port=8080)


@pytest.mark.unit
def test_transport_tls(static_dir):
    config = ServerConfig(
        static_dir=str(static_dir),
        http_port=8080,
        https_port=8443,
        tls_key_path="key.pem",
        tls_cert_path="cert.pem",
    )
    assert config.tls_enabled
    assert config.transport == TlsTransport(
        port=8443, redirect_port=8080, key_path="key.pem", cert_path="cert.pem"
    )


@pytest.mark.unit
def test_tls_enabled_by_key_alone(static_dir):
    resolution = resolve_config({"staticDir": str(static_dir), "sslKey": "key.pem"})
    assert resolution.config.tls_enabled
    assert resolution.config.transport.cert_path is None


@pytest.mark.unit
def test_config_is_immutable(static_dir):
    config = ServerConfig(static_dir=str(static_dir))
    with pytest.raises(FrozenInstanceError):
        config.host = "0.0.0.0"


@pytest.mark.unit
def test_default_static_dir_is_repo_relative(monkeypatch, tmp_path):
    from treeserve.core import paths

    monkeypatch.setattr(paths, "get_project_root", lambda: str(tmp_path))
    assert paths.get_default_static_dir() == os.path.join(str(tmp_path), "static")

    resolution = resolve_config({})
    assert resolution.status is ResolutionStatus.MISSING_ASSETS
    assert os.path.join(str(tmp_path), "static", "build") in resolution.message
