import pytest

from place_site.error_pages import DEFAULT_404, ErrorPage, ErrorPages, error_description
from place_site.errors import ConfigurationError


def test_default_page_escapes_detail():
    page = ErrorPage(404, "THE_PATH", DEFAULT_404, None)
    rendered = page.render("/<script>alert(1)</script>")
    assert "&lt;script&gt;" in rendered
    assert "<script>" not in rendered


def test_custom_page_replaces_first_placeholder_and_adds_base():
    page = ErrorPage(404, "THE_PATH", DEFAULT_404, "<html><head><head></head><body>THE_PATH THE_PATH</body></html>")
    rendered = page.render("/missing")
    assert rendered == '<html><head>\n\t<base href="/404/"><head></head><body>/missing THE_PATH</body></html>'


def test_custom_pages_are_loaded_from_the_place(tmp_path):
    (tmp_path / "500").mkdir()
    (tmp_path / "500" / "index.html").write_text("<head></head>THE_ERROR")

    pages = ErrorPages(tmp_path)

    assert not pages.not_found.is_custom
    assert pages.server_error.is_custom
    response = pages.server_error.response("nope")
    assert response.status_code == 500
    assert b"nope" in response.body


def test_error_description():
    assert error_description(ValueError("bad value")) == "bad value"
    assert error_description(KeyError()) == "KeyError"


def test_unreadable_custom_page_is_a_configuration_error(tmp_path):
    (tmp_path / "404").mkdir()
    (tmp_path / "404" / "index.html").write_bytes(b"<html>\xff\xfe</html>")

    with pytest.raises(ConfigurationError, match="custom 404 page"):
        ErrorPages(tmp_path)
