"""HTTP provider 与远程配置源（httpx.MockTransport，不出网）。"""

import json
import unittest

import httpx

from beacon_hub.capabilities.interfaces import ProviderConfig
from beacon_hub.common.errors import RemoteConfigError
from beacon_hub.events.models import EventKind, build_event
from beacon_hub.modules.clarity import ClarityProvider
from beacon_hub.modules.google_analytics import GoogleAnalyticsProvider
from beacon_hub.modules.posthog import PostHogProvider
from beacon_hub.modules.remote_config import HttpConfigSource, RemoteConfigEndpoint


class Recorder:
    """MockTransport handler that records requests and returns a canned response."""

    def __init__(self, status=200, body=None, text=None):
        self.requests: list[httpx.Request] = []
        self.status = status
        self.body = body
        self.text = text

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.text is not None:
            return httpx.Response(self.status, text=self.text)
        return httpx.Response(self.status, json=self.body if self.body is not None else {})

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def event(kind, name, props=None):
    return build_event(kind, name, anonymous_id="anon_1", session_id="session_1", properties=props)


def config(name, **params):
    return ProviderConfig(name=name, enabled=True, activation_params=params)


class TestGoogleAnalytics(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.rec = Recorder()
        self.client = self.rec.client()
        self.provider = GoogleAnalyticsProvider(client=self.client)

    async def asyncTearDown(self):
        await self.provider.aclose()
        await self.client.aclose()

    def test_activation_needs_measurement_id_only(self):
        lookup = {"GA_TRACKING_ID": "G-1", "GA_ENABLED": "true"}.get
        cfg = self.provider.build_config(lambda k, d: lookup(k, d))
        self.assertTrue(self.provider.activation_predicate(cfg))
        self.assertEqual(cfg.param("api_secret"), "")

        off = self.provider.build_config(lambda k, d: {"GA_TRACKING_ID": ""}.get(k, d))
        self.assertFalse(self.provider.activation_predicate(off))

    async def test_initialize_loads_script_then_sends_events(self):
        await self.provider.initialize(config("google-analytics", measurement_id="G-1", api_secret="s3"))
        self.assertTrue(self.provider.is_ready())
        script = self.rec.requests[0]
        self.assertEqual(script.method, "GET")
        self.assertEqual(script.url.params["id"], "G-1")

        await self.provider.on_track(event(EventKind.TRACK, "signup", {"plan": "pro"}))
        req = self.rec.requests[1]
        self.assertEqual(req.method, "POST")
        self.assertEqual(req.url.params["measurement_id"], "G-1")
        self.assertEqual(req.url.params["api_secret"], "s3")
        body = json.loads(req.content)
        self.assertEqual(body["client_id"], "anon_1")
        self.assertEqual(body["events"][0]["name"], "signup")
        self.assertEqual(body["events"][0]["params"]["plan"], "pro")
        self.assertIn("timestamp_micros", body)

    async def test_page_view(self):
        await self.provider.initialize(config("google-analytics", measurement_id="G-1"))
        await self.provider.on_page(event(EventKind.PAGE, "/pricing"))
        req = self.rec.requests[-1]
        self.assertNotIn("api_secret", req.url.params)
        params = json.loads(req.content)["events"][0]
        self.assertEqual(params["name"], "page_view")
        self.assertEqual(params["params"]["page_path"], "/pricing")

    async def test_script_error_fails_initialize(self):
        rec = Recorder(status=404)
        async with rec.client() as client:
            provider = GoogleAnalyticsProvider(client=client)
            with self.assertRaises(httpx.HTTPStatusError):
                await provider.initialize(config("google-analytics", measurement_id="G-BAD"))
            self.assertFalse(provider.is_ready())


class TestPostHog(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.rec = Recorder()
        self.client = self.rec.client()
        self.provider = PostHogProvider(client=self.client)
        self.provider.initialize(config("posthog", api_key="phc_1", host_url="https://eu.posthog.com/"))

    async def asyncTearDown(self):
        await self.client.aclose()

    async def test_capture_payload(self):
        ev = event(EventKind.TRACK, "clicked", {"button": "buy"})
        await self.provider.on_track(ev)
        req = self.rec.requests[0]
        self.assertEqual(str(req.url), "https://eu.posthog.com/capture/")
        body = json.loads(req.content)
        self.assertEqual(body["api_key"], "phc_1")
        self.assertEqual(body["event"], "clicked")
        self.assertEqual(body["distinct_id"], "anon_1")
        self.assertEqual(body["properties"]["button"], "buy")
        self.assertEqual(body["timestamp"], ev.enriched_at)

    async def test_identify_links_anonymous_id_and_sticks(self):
        await self.provider.on_identify(event(EventKind.IDENTIFY, "user-42", {"plan": "pro"}))
        body = json.loads(self.rec.requests[0].content)
        self.assertEqual(body["event"], "$identify")
        self.assertEqual(body["distinct_id"], "user-42")
        self.assertEqual(body["properties"]["$anon_distinct_id"], "anon_1")
        self.assertEqual(body["properties"]["$set"]["plan"], "pro")

        await self.provider.on_page(event(EventKind.PAGE, "/home"))
        page = json.loads(self.rec.requests[1].content)
        self.assertEqual(page["event"], "$pageview")
        self.assertEqual(page["distinct_id"], "user-42")
        self.assertEqual(page["properties"]["$current_url"], "/home")

    async def test_backend_error_surfaces_to_caller(self):
        rec = Recorder(status=500)
        async with rec.client() as client:
            provider = PostHogProvider(client=client)
            provider.initialize(config("posthog", api_key="k", host_url="https://ph.example"))
            with self.assertRaises(httpx.HTTPStatusError):
                await provider.on_track(event(EventKind.TRACK, "x"))


class TestClarity(unittest.IsolatedAsyncioTestCase):
    async def test_initialize_fetches_project_tag(self):
        rec = Recorder(text="/* tag */")
        async with rec.client() as client:
            provider = ClarityProvider(client=client)
            await provider.initialize(config("clarity", project_id="abc123"))
            self.assertTrue(provider.is_ready())
            self.assertEqual(str(rec.requests[0].url), "https://www.clarity.ms/tag/abc123")
            self.assertIsNone(provider.on_track(event(EventKind.TRACK, "x")))
            self.assertEqual(len(rec.requests), 1)


class TestHttpConfigSource(unittest.IsolatedAsyncioTestCase):
    endpoint = RemoteConfigEndpoint(url="https://edge.example/functions/v1/get-analytics-config", api_key="anon")

    async def test_post_with_key_headers(self):
        rec = Recorder(body={"GA_TRACKING_ID": "G-REMOTE"})
        async with rec.client() as client:
            data = await HttpConfigSource(self.endpoint, client=client)()
        self.assertEqual(data, {"GA_TRACKING_ID": "G-REMOTE"})
        req = rec.requests[0]
        self.assertEqual(req.method, "POST")
        self.assertEqual(req.headers["apikey"], "anon")
        self.assertEqual(req.headers["authorization"], "Bearer anon")

    async def test_get_without_key(self):
        rec = Recorder(body={"A": "1"})
        endpoint = RemoteConfigEndpoint(url="https://cfg.example/analytics", method="GET")
        async with rec.client() as client:
            await HttpConfigSource(endpoint, client=client)()
        req = rec.requests[0]
        self.assertEqual(req.method, "GET")
        self.assertNotIn("apikey", req.headers)

    async def test_error_cases(self):
        cases = [
            Recorder(status=503, body={"error": "down"}),
            Recorder(text="<html>oops</html>"),
            Recorder(body=[1, 2]),
            Recorder(body={}),
        ]
        for rec in cases:
            async with rec.client() as client:
                with self.assertRaises(RemoteConfigError):
                    await HttpConfigSource(self.endpoint, client=client)()


if __name__ == "__main__":
    unittest.main(verbosity=2)
