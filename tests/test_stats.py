from place_site.stats import STATISTICS_ROUTE_FILE_NAME, Stats, load_or_create_route


def test_route_is_created_once(tmp_path):
    route_file = tmp_path / STATISTICS_ROUTE_FILE_NAME
    route = load_or_create_route(route_file)

    assert route.startswith("/stats/")
    assert len(route) == len("/stats/") + 32
    assert load_or_create_route(route_file) == route


def test_malformed_route_file_is_replaced(tmp_path, caplog):
    route_file = tmp_path / STATISTICS_ROUTE_FILE_NAME
    route_file.write_text("not a route")

    route = load_or_create_route(route_file)

    assert route.startswith("/stats/")
    assert "malformed" in caplog.text


def test_hits_and_misses(tmp_path):
    stats = Stats(tmp_path)
    stats.record("/", 200)
    stats.record("/", 304)
    stats.record("/old", 302)
    stats.record("/nope", 404)
    stats.record("/boom", 500)

    snapshot = stats.snapshot()

    assert snapshot["requests"] == 5
    assert snapshot["hits"] == {"/": 2, "/old": 1}
    assert snapshot["misses"] == {"/nope": 1}
