from pathlib import Path

import pytest

from place_site.config import ServerOptions, expand_aliases, running_as_daemon, settings_directory
from place_site.errors import InvalidPathToServeError, InvalidPortError


def test_aliases_expand_www_and_drop_blanks():
    assert expand_aliases("example.test", ["www", " ", "other.test"]) == ("www.example.test", "other.test")


def test_domains_list_the_main_domain_first(place_dir):
    options = ServerOptions.create(path=str(place_dir), domain="example.test", aliases=["www"])
    assert options.domains == ("example.test", "www.example.test")


def test_domain_defaults_to_hostname(place_dir, monkeypatch):
    monkeypatch.setattr("place_site.config.socket.gethostname", lambda: "my-machine")
    assert ServerOptions.create(path=str(place_dir)).domain == "my-machine"


@pytest.mark.parametrize("port", [-1, 49152, 65535])
def test_port_out_of_range(place_dir, port):
    with pytest.raises(InvalidPortError, match="between 0 and 49,151"):
        ServerOptions.create(path=str(place_dir), domain="example.test", port=port).validate()


def test_missing_path(tmp_path):
    with pytest.raises(InvalidPathToServeError, match="does not exist"):
        ServerOptions.create(path=str(tmp_path / "nowhere"), domain="example.test").validate()


def test_file_path(tmp_path):
    file_path = tmp_path / "file.txt"
    file_path.write_text("hi")
    with pytest.raises(InvalidPathToServeError, match="is a file"):
        ServerOptions.create(path=str(file_path), domain="example.test").validate()


def test_root_is_refused():
    with pytest.raises(InvalidPathToServeError, match="root directory"):
        ServerOptions.create(path="/", domain="example.test").validate()


def test_home_is_refused(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    with pytest.raises(InvalidPathToServeError, match="home directory"):
        ServerOptions.create(path=str(home), domain="example.test").validate()


def test_pretty_location(place_dir):
    local = ServerOptions.create(path=str(place_dir), domain="example.test")
    global_on_other_port = ServerOptions.create(path=str(place_dir), domain="example.test", port=8443, is_global=True)

    assert local.pretty_location() == "localhost"
    assert global_on_other_port.pretty_location() == "example.test:8443"


def test_place_locations(place_dir, settings_dir):
    options = ServerOptions.create(path=str(place_dir), domain="example.test", settings_path=settings_dir)

    assert options.routes_directory == place_dir / "routes"
    assert options.legacy_dynamic_directory == place_dir / ".dynamic"
    assert options.wildcard_directory == place_dir / ".wildcard"
    assert options.database_path == place_dir / ".db"
    assert options.data_directory == settings_dir / place_dir.name


def test_settings_directory(tmp_path, monkeypatch):
    assert settings_directory() == tmp_path / "settings"

    monkeypatch.delenv("PLACE_SETTINGS_DIR")
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    assert settings_directory() == Path(tmp_path / "home" / ".place")


def test_running_as_daemon(monkeypatch):
    assert not running_as_daemon()
    monkeypatch.setenv("PLACE_DAEMON", "0")
    assert not running_as_daemon()
    monkeypatch.setenv("PLACE_DAEMON", "1")
    assert running_as_daemon()
