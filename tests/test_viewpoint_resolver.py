"""Tests for the load-state machine, resolver and prefetch policy."""

import asyncio
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from app.errors import (
    FETCH_FAILED_REASON,
    InvalidCredentialFormatError,
    InvalidTransitionError,
    MissingCredentialError,
)
from app.models.viewpoint_models import Coordinates, ImageResource, LoadState, ViewRenderOptions
from app.services.streetview_client import StreetViewClient, build_streetview_url, validate_api_key
from app.services.viewpoint_resolver import ViewpointResolver, ViewpointStateMachine
from conftest import API_KEY, RecordingHandler, make_client, make_viewpoint


def _resolver(handler, n=4, delay=0.0):
    store = ViewpointStateMachine([make_viewpoint(i) for i in range(n)])
    return ViewpointResolver(store, make_client(handler), prefetch_delay=delay)


class TestStreetViewUrl:
    def test_query_parameters(self, render_options):
        url = build_streetview_url(Coordinates(lat=51.5, lng=-0.12), 45.5, render_options)
        parsed = urlparse(url)
        qs = parse_qs(parsed.query)

        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://maps.googleapis.com/maps/api/streetview"
        assert qs["size"] == ["640x640"]
        assert qs["location"] == ["51.5,-0.12"]
        assert qs["heading"] == ["45.5"]
        assert qs["pitch"] == ["0"]
        assert qs["fov"] == ["90"]
        assert qs["key"] == [API_KEY]

    def test_missing_heading_defaults_to_zero(self, render_options):
        url = build_streetview_url(Coordinates(lat=1, lng=2), None, render_options)
        assert parse_qs(urlparse(url).query)["heading"] == ["0"]

    def test_deterministic(self, render_options):
        c = Coordinates(lat=1, lng=2)
        assert build_streetview_url(c, 10, render_options) == build_streetview_url(c, 10, render_options)

    def test_credential_validation(self):
        assert validate_api_key(API_KEY) == API_KEY
        with pytest.raises(MissingCredentialError):
            validate_api_key("")
        with pytest.raises(InvalidCredentialFormatError):
            validate_api_key("short")
        with pytest.raises(InvalidCredentialFormatError):
            validate_api_key("A" * 38 + "!")


class TestViewpointStateMachine:
    def test_allowed_path_and_subscribers(self):
        store = ViewpointStateMachine([make_viewpoint(0)])
        seen = []
        unsubscribe = store.subscribe(lambda vp, prev: seen.append((prev, vp.load_state)))

        store.transition("vp-0", LoadState.LOADING)
        store.transition("vp-0", LoadState.FAILED, error=FETCH_FAILED_REASON)
        store.transition("vp-0", LoadState.LOADING)
        unsubscribe()
        vp = store.transition("vp-0", LoadState.LOADED, resource=ImageResource(url="u"))

        assert seen == [
            (LoadState.PENDING, LoadState.LOADING),
            (LoadState.LOADING, LoadState.FAILED),
            (LoadState.FAILED, LoadState.LOADING),
        ]
        assert vp.load_state == LoadState.LOADED
        assert vp.resource.url == "u"
        assert vp.error is None

    def test_rejects_regression(self):
        store = ViewpointStateMachine([make_viewpoint(0, LoadState.LOADED)])
        with pytest.raises(InvalidTransitionError):
            store.transition("vp-0", LoadState.LOADING)
        with pytest.raises(InvalidTransitionError):
            store.transition("vp-0", LoadState.FAILED, error="x")

    def test_repeated_terminal_write_is_ignored(self):
        store = ViewpointStateMachine([make_viewpoint(0, LoadState.LOADED)])
        before = store.get("vp-0")
        assert store.transition("vp-0", LoadState.LOADED, resource=ImageResource(url="other")) is before

    def test_unknown_id_is_ignored(self):
        store = ViewpointStateMachine([make_viewpoint(0)])
        assert store.transition("gone", LoadState.LOADING) is None

    def test_queries(self):
        store = ViewpointStateMachine([make_viewpoint(0), make_viewpoint(1, LoadState.LOADED)])
        assert [v.id for v in store.list()] == ["vp-0", "vp-1"]
        assert store.get_by_index(1).id == "vp-1"
        assert store.counts() == {"pending": 1, "loading": 0, "loaded": 1, "failed": 0}
        with pytest.raises(IndexError):
            store.get_by_index(2)


class TestResolve:
    def test_success(self, handler, render_options):
        resolver = _resolver(handler)
        vp = asyncio.run(resolver.resolve("vp-0", render_options))

        assert vp.load_state == LoadState.LOADED
        assert vp.resource.content_type == "image/jpeg"
        assert vp.resource.size_bytes == len(handler.image)
        assert parse_qs(urlparse(vp.resource.url).query)["location"] == ["51.5,-0.12"]

    def test_loaded_is_unchanged(self, handler, render_options):
        resolver = _resolver(handler)
        first = asyncio.run(resolver.resolve("vp-0", render_options))
        second = asyncio.run(resolver.resolve("vp-0", render_options))

        assert second is first
        assert len(handler.requests) == 1

    def test_concurrent_calls_fetch_once(self, handler, render_options):
        resolver = _resolver(handler)
        transitions = []
        resolver.store.subscribe(lambda vp, prev: transitions.append(vp.load_state))

        async def run():
            return await asyncio.gather(
                resolver.resolve("vp-0", render_options),
                resolver.resolve("vp-0", render_options),
            )

        asyncio.run(run())

        assert len(handler.requests) == 1
        assert transitions == [LoadState.LOADING, LoadState.LOADED]
        assert resolver.store.get("vp-0").load_state == LoadState.LOADED

    def test_failure_then_retry(self, render_options):
        handler = RecordingHandler(fail_when=lambda r: True)
        resolver = _resolver(handler)

        failed = asyncio.run(resolver.resolve("vp-0", render_options))
        assert failed.load_state == LoadState.FAILED
        assert failed.error == FETCH_FAILED_REASON
        assert failed.resource is None

        handler.fail_when = lambda r: False
        loaded = asyncio.run(resolver.resolve("vp-0", render_options))
        assert loaded.load_state == LoadState.LOADED
        assert loaded.error is None
        assert len(handler.requests) == 2

    def test_transport_stream_error_fails_and_retries(self, render_options):
        calls = []
        ok = RecordingHandler()

        def flaky(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.StreamError("connection dropped mid-body")
            return ok(request)

        resolver = ViewpointResolver(ViewpointStateMachine([make_viewpoint(0)]), make_client(flaky), prefetch_delay=0)

        failed = asyncio.run(resolver.resolve("vp-0", render_options))
        assert failed.load_state == LoadState.FAILED
        assert failed.error == FETCH_FAILED_REASON

        loaded = asyncio.run(resolver.resolve("vp-0", render_options))
        assert loaded.load_state == LoadState.LOADED
        assert len(calls) == 2

    def test_cancelled_fetch_is_left_retryable(self, handler, render_options):
        async def hang(request):
            await asyncio.Event().wait()

        resolver = ViewpointResolver(ViewpointStateMachine([make_viewpoint(0)]), make_client(hang), prefetch_delay=0)

        async def run():
            task = asyncio.create_task(resolver.resolve("vp-0", render_options))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        assert resolver.store.get("vp-0").load_state == LoadState.FAILED

        resolver.client = make_client(handler)
        assert asyncio.run(resolver.resolve("vp-0", render_options)).load_state == LoadState.LOADED

    def test_non_image_response_fails(self, render_options):
        def html(request):
            return httpx.Response(200, text="<html/>", headers={"content-type": "text/html"})

        store = ViewpointStateMachine([make_viewpoint(0)])
        resolver = ViewpointResolver(store, StreetViewClient(httpx.AsyncClient(transport=httpx.MockTransport(html))))
        assert asyncio.run(resolver.resolve("vp-0", render_options)).load_state == LoadState.FAILED

    @pytest.mark.parametrize(
        "credential, error",
        [(None, MissingCredentialError), ("bad key", InvalidCredentialFormatError)],
    )
    def test_credential_errors_leave_state_untouched(self, handler, credential, error):
        resolver = _resolver(handler)
        options = ViewRenderOptions(credential=credential)

        with pytest.raises(error):
            asyncio.run(resolver.resolve("vp-0", options))
        assert resolver.store.get("vp-0").load_state == LoadState.PENDING
        assert handler.requests == []


class TestCursorPrefetch:
    def test_cursor_and_neighbours_are_loaded(self, handler, render_options):
        resolver = _resolver(handler, n=5)

        async def run():
            vp = await resolver.set_cursor(2, render_options)
            await resolver.wait_idle()
            return vp

        current = asyncio.run(run())

        assert current.index == 2
        assert current.load_state == LoadState.LOADED
        assert resolver.cursor == 2
        states = [v.load_state for v in resolver.store.list()]
        assert states == [LoadState.PENDING, LoadState.LOADED, LoadState.LOADED, LoadState.LOADED, LoadState.PENDING]
        assert len(handler.requests) == 3

    def test_cursor_loads_before_neighbours(self, handler, render_options):
        resolver = _resolver(handler, n=3, delay=0.05)
        order = []
        resolver.store.subscribe(lambda vp, prev: order.append((vp.index, vp.load_state)))

        async def run():
            await resolver.set_cursor(1, render_options)
            await resolver.wait_idle()

        asyncio.run(run())

        assert order[:2] == [(1, LoadState.LOADING), (1, LoadState.LOADED)]
        assert {i for i, _ in order[2:]} == {0, 2}

    def test_already_loaded_neighbour_is_skipped(self, handler, render_options):
        resolver = _resolver(handler, n=3)

        async def run():
            await resolver.resolve("vp-0", render_options)
            await resolver.set_cursor(1, render_options)
            await resolver.wait_idle()

        asyncio.run(run())

        assert len(handler.requests) == 3
        assert all(v.load_state == LoadState.LOADED for v in resolver.store.list())

    def test_edges_have_one_neighbour(self, handler, render_options):
        resolver = _resolver(handler, n=3)

        async def run():
            await resolver.set_cursor(0, render_options)
            await resolver.wait_idle()

        asyncio.run(run())
        assert [v.load_state for v in resolver.store.list()] == [LoadState.LOADED, LoadState.LOADED, LoadState.PENDING]

    def test_out_of_range_cursor(self, handler, render_options):
        resolver = _resolver(handler, n=2)
        with pytest.raises(IndexError):
            asyncio.run(resolver.set_cursor(5, render_options))


class TestPreloadAll:
    def test_loads_everything_with_progress(self, render_options):
        handler = RecordingHandler(fail_when=lambda r: "51.501" in str(r.url))
        resolver = _resolver(handler, n=4)
        progress = []

        result = asyncio.run(resolver.preload_all(render_options, on_progress=lambda c, t: progress.append((c, t)), concurrency=2))

        assert [v.load_state for v in result] == [LoadState.LOADED, LoadState.FAILED, LoadState.LOADED, LoadState.LOADED]
        assert progress[-1] == (4, 4)
        assert len(progress) == 4
