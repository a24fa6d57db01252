import datetime

from webtop.services.hits import Hit, parse_line
from webtop.services.visits import Visit, VisitStore


T0 = datetime.datetime(2023, 10, 10, 12, 0, 0)


def visit_of(store, host):
    return store.get_visit_by_id(store.host_visit_map[host])


def make_hit(host="1.2.3.4", seconds=0, path="/index.html", status=200, size=100, referer="-", agent="curl/7.0"):
    return Hit(
        host=host,
        time=T0 + datetime.timedelta(seconds=seconds),
        status=status,
        bytes=size,
        path=path,
        referer=referer,
        agent=agent,
    )


def test_first_hit_creates_visit():
    store = VisitStore()
    visit = store.feed_hit(make_hit())

    assert store.visit_count() == 1
    assert visit.hit_count == 1
    assert store.host_visit_map["1.2.3.4"] == visit.id
    assert store.get_visit_by_id(visit.id) is visit
    assert store.path_visit_map == {"/index.html": {visit.id}}
    assert store.referer_visit_map == {"-": {visit.id}}
    assert store.last_seen_time == T0


def test_second_hit_reuses_visit():
    store = VisitStore()
    first = store.feed_hit(make_hit())
    second = store.feed_hit(make_hit(seconds=5, path="/other.html"))

    assert second is first
    assert first.hit_count == 2
    assert store.visit_counter == 1
    assert store.path_visit_map["/other.html"] == {first.id}


def test_visit_counters_and_bytes():
    store = VisitStore()
    store.feed_hit(make_hit(status=200, size=10))
    store.feed_hit(make_hit(seconds=1, status=404, size=20))
    visit = store.feed_hit(make_hit(seconds=2, status=500, size=30))

    assert visit.hit_count == 3
    assert visit.hit_4xx_count == 1
    assert visit.hit_5xx_count == 1
    assert visit.bytes == 60
    assert visit.first_hit_time == T0
    assert visit.last_hit_time == T0 + datetime.timedelta(seconds=2)
    assert visit.has_problems()
    assert [h.status for h in visit.hits] == [200, 404, 500]


def test_visit_without_errors_has_no_problems():
    visit = Visit.from_first_hit(1, make_hit())
    visit.feed_hit(make_hit())
    assert not visit.has_problems()


def test_resource_hit_keeps_page_as_last_path():
    store = VisitStore()
    store.feed_hit(make_hit(path="/index.html"))
    visit = store.feed_hit(make_hit(seconds=1, path="/style.css"))
    assert visit.last_path == "/index.html"

    visit = store.feed_hit(make_hit(seconds=2, path="/contact.html"))
    assert visit.last_path == "/contact.html"


def test_resource_replaces_resource_until_page_arrives():
    store = VisitStore()
    store.feed_hit(make_hit(path="/favicon.ico"))
    visit = store.feed_hit(make_hit(seconds=1, path="/logo.png"))
    assert visit.last_path == "/logo.png"

    visit = store.feed_hit(make_hit(seconds=2, path="/"))
    assert visit.last_path == "/"


def test_referer_comes_from_first_hit_only():
    store = VisitStore()
    visit = store.feed_hit(make_hit(referer="https://a.example/"))
    store.feed_hit(make_hit(seconds=1, referer="https://b.example/"))

    assert visit.referer == "https://a.example/"
    assert store.referer_visit_map == {"https://a.example/": {visit.id}}


def test_last_seen_time_never_goes_back():
    store = VisitStore()
    store.feed_hit(make_hit(host="a", seconds=100))
    store.feed_hit(make_hit(host="b", seconds=10))
    assert store.last_seen_time == T0 + datetime.timedelta(seconds=100)


def test_purge_removes_idle_visit_from_every_index():
    store = VisitStore()
    old = store.feed_hit(make_hit(host="old", path="/a.html", referer="https://r.example/"))
    store.feed_hit(make_hit(host="old", seconds=0, path="/shared.html"))
    new = store.feed_hit(make_hit(host="new", seconds=301, path="/shared.html"))

    assert store.purge_visits() == 1

    assert store.get_visit_by_id(old.id) is None
    assert "old" not in store.host_visit_map
    assert "https://r.example/" not in store.referer_visit_map
    assert "/a.html" not in store.path_visit_map
    assert store.path_visit_map["/shared.html"] == {new.id}
    assert store.visit_count() == 1


def test_purge_keeps_visit_at_the_window_edge():
    store = VisitStore()
    store.feed_hit(make_hit(host="a"))
    store.feed_hit(make_hit(host="b", seconds=300))
    assert store.purge_visits() == 0
    assert store.visit_count() == 2


def test_purge_uses_log_time_not_wall_clock():
    # Hits from 2023 must not be evicted just because it's later now.
    store = VisitStore()
    store.feed_hit(make_hit(host="a"))
    store.feed_hit(make_hit(host="b", seconds=60))
    assert store.purge_visits() == 0


def test_purge_on_empty_store():
    assert VisitStore().purge_visits() == 0


def test_returning_host_gets_new_id():
    store = VisitStore()
    first = store.feed_hit(make_hit(host="h"))
    store.feed_hit(make_hit(host="other", seconds=400))
    store.purge_visits()

    again = store.feed_hit(make_hit(host="h", seconds=401))
    assert again.id > first.id
    assert again.hit_count == 1
    assert store.host_visit_map["h"] == again.id


def test_idle_window_is_configurable():
    store = VisitStore(idle_seconds=10)
    store.feed_hit(make_hit(host="a"))
    store.feed_hit(make_hit(host="b", seconds=11))
    assert store.purge_visits() == 1
    assert store.purge_visits(idle_seconds=0) == 0


def test_sorted_visits_by_hits_then_recency():
    store = VisitStore()
    for i in range(3):
        store.feed_hit(make_hit(host="busy", seconds=i))
    store.feed_hit(make_hit(host="early", seconds=1))
    store.feed_hit(make_hit(host="late", seconds=5))

    hosts = [v.host for v in store.iter_sorted_visits()]
    assert hosts == ["busy", "late", "early"]


def test_sorted_path_and_referer_chunks():
    store = VisitStore()
    store.feed_hit(make_hit(host="a", path="/x.html", referer="https://r1/"))
    store.feed_hit(make_hit(host="a", seconds=1, path="/x.html"))
    store.feed_hit(make_hit(host="b", path="/x.html", referer="https://r1/"))
    store.feed_hit(make_hit(host="b", seconds=1, path="/y.html"))
    store.feed_hit(make_hit(host="c", path="/z.html", referer="https://r2/"))

    assert list(store.iter_sorted_path_chunks()) == [("/x.html", 2), ("/y.html", 1), ("/z.html", 1)]
    assert list(store.iter_sorted_referer_chunks()) == [("https://r1/", 2), ("https://r2/", 1)]


def test_drilldown_lists_visits_behind_a_row():
    store = VisitStore()
    store.feed_hit(make_hit(host="a", path="/x.html", referer="https://r1/"))
    store.feed_hit(make_hit(host="b", path="/x.html", referer="https://r1/"))
    store.feed_hit(make_hit(host="b", seconds=1, path="/x.html"))

    assert [v.host for v in store.visits_for_path("/x.html")] == ["b", "a"]
    assert [v.host for v in store.visits_for_referer("https://r1/")] == ["b", "a"]
    assert store.visits_for_path("/missing") == []


def test_end_to_end_lines():
    store = VisitStore()
    store.feed_hit(parse_line(
        '1.2.3.4 - - [10/Oct/2023:13:55:36 +0000] "GET /index.html HTTP/1.1" 200 1024 "-" "curl/7.0"'
    ))
    visit = visit_of(store, "1.2.3.4")
    assert visit.host == "1.2.3.4"
    assert visit.hit_count == 1
    assert visit.bytes == 1024
    assert visit.last_path == "/index.html"
    assert visit.hit_4xx_count == 0

    store.feed_hit(parse_line(
        '1.2.3.4 - - [10/Oct/2023:13:55:40 +0000] "GET /style.css HTTP/1.1" 200 200 "-" "curl/7.0"'
    ))
    assert store.visit_count() == 1
    assert visit.hit_count == 2
    assert visit.last_path == "/index.html"


def test_visit_formatting():
    visit = Visit.from_first_hit(1, make_hit())
    visit.feed_hit(make_hit(size=512))
    visit.feed_hit(make_hit(seconds=90, size=2048))
    assert visit.fmt_time_range() == "2023-10-10 12:00:00 - 12:01:30"
    assert visit.fmt_bytes() == "2.5 KB"

    small = Visit.from_first_hit(2, make_hit())
    small.feed_hit(make_hit(size=12))
    assert small.fmt_bytes() == "12 B"
