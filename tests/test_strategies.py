from __future__ import annotations

import asyncio
import threading

from savepast.cache.messages import FetchRequest, FetchResponse
from savepast.worker.strategies import Route, classify
from tests.utils_runtime import UPSTREAM, FakeNetwork, make_runtime

API_PREFIXES = ["/api/", "/.netlify/functions/"]
STATIC_EXT = [".js", ".css", ".png", ".woff2"]


def _classify(url: str, **kw) -> Route:
    return classify(FetchRequest(url=url, **kw), api_prefixes=API_PREFIXES, static_extensions=STATIC_EXT)


def test_classification_priority():
    assert _classify("http://h/api/items") == Route.NETWORK_FIRST
    # API namespace wins over the static extension.
    assert _classify("http://h/api/logo.png") == Route.NETWORK_FIRST
    assert _classify("http://h/.netlify/functions/colorize") == Route.NETWORK_FIRST
    assert _classify("http://h/assets/app.js") == Route.CACHE_FIRST
    assert _classify("http://h/fonts/x.woff2", headers={"Accept": "text/html"}) == Route.CACHE_FIRST
    assert _classify("http://h/gallery", mode="navigate") == Route.NETWORK_FIRST_OFFLINE_FALLBACK
    assert _classify("http://h/gallery", headers={"Accept": "text/html,*/*"}) == Route.NETWORK_FIRST_OFFLINE_FALLBACK
    assert _classify("http://h/manifest.webmanifest") == Route.STALE_WHILE_REVALIDATE


def test_non_get_and_non_http_requests_bypass():
    assert _classify("http://h/api/items", method="POST") == Route.BYPASS
    assert _classify("chrome-extension://abc/app.js") == Route.BYPASS


def test_cache_first_serves_second_request_without_network():
    net = FakeNetwork()
    net.serve("/assets/app.js", "console.log(1)", content_type="application/javascript")
    rt = make_runtime(net)
    url = UPSTREAM + "/assets/app.js"

    async def run():
        engine = rt.worker.engine
        first = await engine.handle(FetchRequest(url=url))
        net.online = False
        second = await engine.handle(FetchRequest(url=url))
        await rt.close()
        return first, second

    first, second = asyncio.run(run())

    assert first.status == 200
    assert second.body == b"console.log(1)"
    assert net.network_calls(url) == 1


def test_cache_first_does_not_cache_error_status():
    net = FakeNetwork()
    rt = make_runtime(net)
    url = UPSTREAM + "/missing.css"

    async def run():
        r1 = await rt.worker.engine.handle(FetchRequest(url=url))
        r2 = await rt.worker.engine.handle(FetchRequest(url=url))
        await rt.close()
        return r1, r2

    r1, r2 = asyncio.run(run())

    assert r1.status == 404 and r2.status == 404
    assert net.network_calls(url) == 2
    assert rt.storage.match(FetchRequest(url=url)) is None


def test_network_first_falls_back_to_cached_api_response():
    net = FakeNetwork()
    net.serve("/api/artifacts", '{"items": [1]}', content_type="application/json")
    rt = make_runtime(net)
    url = UPSTREAM + "/api/artifacts"

    async def run():
        engine = rt.worker.engine
        online = await engine.handle(FetchRequest(url=url))
        await rt.worker.wait_background()
        net.online = False
        offline = await engine.handle(FetchRequest(url=url))
        await rt.close()
        return online, offline

    online, offline = asyncio.run(run())

    assert online.json() == {"items": [1]}
    assert offline.status == 200
    assert offline.json() == {"items": [1]}
    assert rt.storage.match(FetchRequest(url=url), partition="savethepast-api-v1.0.0") is not None


def test_network_first_without_cache_returns_offline_json():
    net = FakeNetwork()
    net.online = False
    rt = make_runtime(net)

    async def run():
        resp = await rt.worker.engine.handle(FetchRequest(url=UPSTREAM + "/api/artifacts"))
        await rt.close()
        return resp

    resp = asyncio.run(run())

    assert resp.status == 503
    assert resp.headers["content-type"] == "application/json"
    assert resp.json() == {"error": "Offline", "message": "No cached data available"}


def test_navigation_offline_fallback_order():
    net = FakeNetwork()
    net.online = False
    rt = make_runtime(net)
    nav = FetchRequest(url=UPSTREAM + "/artifact/42", mode="navigate")
    shell = FetchResponse(status=200, headers={"content-type": "text/html"}, body=b"shell")
    offline_page = FetchResponse(status=200, headers={"content-type": "text/html"}, body=b"offline")

    async def run():
        engine = rt.worker.engine
        bare = await engine.handle(nav)
        rt.storage.put("savethepast-static-v1.0.0", FetchRequest(url=UPSTREAM + "/offline.html"), offline_page)
        with_offline_page = await engine.handle(nav)
        rt.storage.put("savethepast-static-v1.0.0", FetchRequest(url=UPSTREAM + "/index.html"), shell)
        with_shell = await engine.handle(nav)
        await rt.close()
        return bare, with_offline_page, with_shell

    bare, with_offline_page, with_shell = asyncio.run(run())

    assert bare.status == 503 and bare.body == b"Offline"
    assert with_offline_page.body == b"offline"
    assert with_shell.body == b"shell"


def test_navigation_returns_network_response_verbatim_and_uncached():
    net = FakeNetwork()
    net.serve("/gallery", "<html>live</html>", status=200, content_type="text/html")
    rt = make_runtime(net)
    url = UPSTREAM + "/gallery"

    async def run():
        resp = await rt.worker.engine.handle(FetchRequest(url=url, mode="navigate"))
        await rt.worker.wait_background()
        await rt.close()
        return resp

    resp = asyncio.run(run())

    assert resp.body == b"<html>live</html>"
    assert rt.storage.match(FetchRequest(url=url)) is None


def test_stale_while_revalidate_returns_cached_then_refreshes():
    net = FakeNetwork()
    net.serve("/data/feed", "fresh")
    rt = make_runtime(net)
    url = UPSTREAM + "/data/feed"
    dynamic = "savethepast-dynamic-v1.0.0"
    rt.storage.put(dynamic, FetchRequest(url=url), FetchResponse(status=200, body=b"stale"))

    async def run():
        resp = await rt.worker.engine.handle(FetchRequest(url=url))
        before = rt.storage.match(FetchRequest(url=url)).body
        await rt.worker.wait_background()
        after = rt.storage.match(FetchRequest(url=url)).body
        await rt.close()
        return resp, before, after

    resp, before, after = asyncio.run(run())

    assert resp.body == b"stale"
    assert before == b"stale"
    assert after == b"fresh"
    assert net.network_calls(url) == 1


def test_stale_while_revalidate_without_cache_waits_for_network():
    net = FakeNetwork()
    net.serve("/data/feed", "fresh")
    rt = make_runtime(net)
    url = UPSTREAM + "/data/feed"

    async def run():
        resp = await rt.worker.engine.handle(FetchRequest(url=url))
        await rt.close()
        return resp

    resp = asyncio.run(run())

    assert resp.body == b"fresh"
    assert rt.storage.match(FetchRequest(url=url)).body == b"fresh"


def test_stale_while_revalidate_network_failure_yields_503_not_exception():
    net = FakeNetwork()
    net.online = False
    rt = make_runtime(net)

    async def run():
        resp = await rt.worker.engine.handle(FetchRequest(url=UPSTREAM + "/data/feed"))
        await rt.close()
        return resp

    resp = asyncio.run(run())

    assert resp.status == 503
    assert resp.status_text == "Service Unavailable"


def test_undecodable_upstream_body_counts_as_network_failure():
    net = FakeNetwork()
    for path in ("/data/feed", "/assets/app.js", "/api/items", "/gallery"):
        net.serve_garbled(path)
    rt = make_runtime(net)

    async def run():
        engine = rt.worker.engine
        out = {}
        out["swr"] = await engine.handle(FetchRequest(url=UPSTREAM + "/data/feed"))
        out["static"] = await engine.handle(FetchRequest(url=UPSTREAM + "/assets/app.js"))
        out["api"] = await engine.handle(FetchRequest(url=UPSTREAM + "/api/items"))
        out["nav"] = await engine.handle(FetchRequest(url=UPSTREAM + "/gallery", mode="navigate"))
        await rt.worker.wait_background()
        await rt.close()
        return out

    out = asyncio.run(run())

    assert out["swr"].status == 503 and out["swr"].body == b"Network error"
    assert out["static"].status == 503 and out["static"].body == b"Network error"
    assert out["api"].json() == {"error": "Offline", "message": "No cached data available"}
    assert out["nav"].status == 503 and out["nav"].body == b"Offline"
    assert rt.storage.keys() == []


def test_undecodable_body_falls_back_to_cached_copy():
    net = FakeNetwork()
    net.serve_garbled("/api/items")
    rt = make_runtime(net)
    url = UPSTREAM + "/api/items"
    rt.storage.put("savethepast-api-v1.0.0", FetchRequest(url=url), FetchResponse(status=200, body=b"[1]"))

    async def run():
        resp = await rt.worker.engine.handle(FetchRequest(url=url))
        await rt.close()
        return resp

    resp = asyncio.run(run())

    assert resp.status == 200
    assert resp.body == b"[1]"


def test_cache_lookups_run_off_the_event_loop_thread():
    net = FakeNetwork()
    net.serve("/data/feed", "fresh")
    rt = make_runtime(net)
    seen = []
    match = rt.storage.match

    def recording_match(request, **kw):
        seen.append(threading.get_ident())
        return match(request, **kw)

    rt.storage.match = recording_match

    async def run():
        loop_thread = threading.get_ident()
        resp = await rt.worker.engine.handle(FetchRequest(url=UPSTREAM + "/data/feed"))
        await rt.close()
        return loop_thread, resp

    loop_thread, resp = asyncio.run(run())

    assert resp.body == b"fresh"
    assert seen
    assert loop_thread not in seen
