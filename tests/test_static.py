import gzip

import pytest
from starlette.applications import Starlette
from starlette.exceptions import HTTPException
from starlette.routing import Mount
from starlette.testclient import TestClient

from place_site.static import SecureStaticFiles, WildcardRoutes, build_site_tail, secure_filepath


def test_secure_filepath_refuses_escapes(tmp_path):
    assert secure_filepath(str(tmp_path), str(tmp_path / "a" / "b.html")) == str(tmp_path / "a" / "b.html")
    with pytest.raises(HTTPException) as info:
        secure_filepath(str(tmp_path), str(tmp_path / ".." / "etc" / "passwd"))
    assert info.value.status_code == 403


def test_hidden_paths(tmp_path):
    files = SecureStaticFiles(tmp_path, hidden=("routes",))

    assert files.is_hidden(".git/config")
    assert files.is_hidden("blog/.draft.html")
    assert files.is_hidden("routes/get/hello.py")
    assert not files.is_hidden("blog/routes.html")
    assert not files.is_hidden("index.html")
    assert not files.is_hidden(".")


def test_wildcards_are_loaded(tmp_path, write_file, caplog):
    wildcards = tmp_path / ".wildcard"
    write_file(wildcards, "app.html", "<html><body>app</body></html>")
    write_file(wildcards, "docs/index.html", "<html><body>docs</body></html>")
    write_file(wildcards, "empty/readme.txt", "nothing here")
    write_file(wildcards, "notes.txt", "not html")

    routes = WildcardRoutes.load(wildcards)

    assert sorted(routes.pages) == ["app", "docs"]
    assert "window.route" in routes.pages["docs"]
    assert "no index.html" in caplog.text
    assert "Non-HTML file (notes.txt)" in caplog.text


def test_wildcard_matching():
    routes = WildcardRoutes({"app": "page"})

    assert routes.match("/app/anything") == "page"
    assert routes.match("/app/a/b/c") == "page"
    assert routes.match("/app") is None
    assert routes.match("/app/") is None
    assert routes.match("/other/thing") is None


def test_missing_wildcard_folder(tmp_path):
    assert WildcardRoutes.load(tmp_path / ".wildcard").pages == {}


def test_precompressed_files_are_served_with_encoding(tmp_path):
    script = "console.log('compressed')"
    (tmp_path / "app.js.gz").write_bytes(gzip.compress(script.encode()))
    tail = build_site_tail(tmp_path, tmp_path / ".generated", tmp_path / ".wildcard", hidden=("routes",))
    client = TestClient(Starlette(routes=[Mount("/", app=tail)]))

    response = client.get("/app.js.gz")

    assert response.status_code == 200
    assert response.headers["content-encoding"] == "gzip"
    assert response.headers["content-type"].startswith("application/javascript")
    assert response.text == script


def test_tail_falls_through_to_404(tmp_path):
    tail = build_site_tail(tmp_path, tmp_path / ".generated", tmp_path / ".wildcard", hidden=())
    client = TestClient(Starlette(routes=[Mount("/", app=tail)]))

    assert client.get("/nothing-here").status_code == 404
    assert client.post("/nothing-here").status_code == 404
