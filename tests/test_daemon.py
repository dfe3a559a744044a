import pytest

from place_site import daemon
from place_site.daemon import DaemonError, unit_file


def test_unit_file():
    unit = unit_file(["/srv/site", "@hostname", "--domain=example.test"], "aral", executable="/usr/local/bin/place")

    assert "User=aral" in unit
    assert "Environment=PLACE_DAEMON=1" in unit
    assert "Restart=always" in unit
    assert "ExecStart=/usr/local/bin/place serve /srv/site @hostname --domain=example.test" in unit
    assert unit.endswith("WantedBy=multi-user.target\n")


def test_without_systemctl(monkeypatch):
    monkeypatch.setattr(daemon.shutil, "which", lambda name: None)

    assert daemon.status() == daemon.DaemonStatus(is_active=False, is_enabled=False)
    assert not daemon.is_active()
    with pytest.raises(DaemonError, match="systemd"):
        daemon.start()
