import pytest

from clusterops.ui import CSS_PATH, JS_PATH, UIHandler, css_url, js_url


@pytest.mark.parametrize(
    "source,release,expected",
    [
        ("auto", False, ""),
        ("auto", True, JS_PATH),
        ("external", True, ""),
        ("bundle", False, JS_PATH),
    ],
)
def test_js_url(source, release, expected):
    assert js_url(source, release) == expected


def test_css_url():
    assert css_url("bundle", False) == CSS_PATH
    assert css_url("external", True) == ""
    assert css_url("auto", False) == ""


def make_handler(source, release=False, fetch=None, path="/ui"):
    calls = []

    def default_fetch(url):
        calls.append(url)
        return b"<html>"

    handler = UIHandler(lambda: "https://index.example.com/", lambda: path,
                        lambda: source, lambda: release, fetch or default_fetch)
    return handler, calls


def test_index_location_bundle_and_external():
    assert make_handler("bundle")[0].index_location() == ("/ui", False)
    assert make_handler("external")[0].index_location() == ("https://index.example.com/", True)


def test_index_location_auto_release_uses_path():
    handler, calls = make_handler("auto", release=True)
    assert handler.index_location() == ("/ui", False)
    assert calls == []


def test_index_location_auto_downloadable():
    handler, calls = make_handler("auto")
    assert handler.index_location() == ("https://index.example.com/", True)
    handler.index_location()
    assert calls == ["https://index.example.com/"]


def test_can_download_failure_is_remembered():
    attempts = []

    def failing(url):
        attempts.append(url)
        raise OSError("down")

    handler, _ = make_handler("auto", fetch=failing)
    assert handler.can_download("u") is False
    assert handler.can_download("u") is False
    assert attempts == ["u"]
    assert handler.index_location() == ("/ui", False)


def test_index_content_from_directory(tmp_path):
    (tmp_path / "index.html").write_bytes(b"hello")
    handler, _ = make_handler("bundle", path=str(tmp_path))
    assert handler.index_content() == b"hello"


def test_asset_path(tmp_path):
    (tmp_path / "app.js").write_text("x")
    handler, _ = make_handler("bundle", path=str(tmp_path))
    assert handler.asset_path("/dashboard/app.js") == str(tmp_path / "app.js")
    assert handler.asset_path("/dashboard/missing.js") is None
    assert handler.asset_path("/dashboard/../../etc/passwd") is None