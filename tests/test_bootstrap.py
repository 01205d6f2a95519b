"""启动编排：配置 -> 激活过滤 -> 注册 -> 并发初始化。"""

import asyncio
import unittest

from beacon_hub.capabilities.console import ConsoleProvider
from beacon_hub.core.bootstrap import BootstrapSequencer
from beacon_hub.core.config import LOCAL_DEFAULTS, ConfigResolver
from beacon_hub.core.registry import ProviderState
from beacon_hub.core.tracker import Tracker

from fakes import RecordingProvider, make_dispatch


def web_analytics(**kw):
    return RecordingProvider(
        "google-analytics",
        param_keys={"measurement_id": "GA_TRACKING_ID"},
        enabled_key="GA_ENABLED",
        **kw,
    )


def product_analytics(**kw):
    return RecordingProvider(
        "posthog",
        param_keys={"api_key": "POSTHOG_API_KEY", "host_url": "POSTHOG_HOST_URL"},
        enabled_key="POSTHOG_ENABLED",
        **kw,
    )


def session_replay(**kw):
    return RecordingProvider(
        "clarity",
        param_keys={"project_id": "CLARITY_PROJECT_ID"},
        enabled_key="CLARITY_ENABLED",
        **kw,
    )


class TestBootstrap(unittest.IsolatedAsyncioTestCase):
    async def test_only_tracking_id_set_activates_one_provider(self):
        """端到端：配置解析前的两次 track 在就绪后按序送达，未激活的 provider 什么都收不到。"""
        fetched = asyncio.Event()

        async def fetch():
            await fetched.wait()
            return {"GA_TRACKING_ID": "G-REMOTE"}

        dispatch = make_dispatch()
        tracker = Tracker(dispatch=dispatch, identity=dispatch.identity)
        ga, ph, cl = web_analytics(), product_analytics(), session_replay()
        sequencer = BootstrapSequencer(
            resolver=ConfigResolver(dict(LOCAL_DEFAULTS), fetch=fetch),
            dispatch=dispatch,
            adapters=[ConsoleProvider(), ga, ph, cl],
        )

        run = asyncio.create_task(sequencer.run())
        await asyncio.sleep(0)
        tracker.track_event("first")
        tracker.track_event("second")
        fetched.set()

        result = await run
        self.assertEqual(result.registered, ["google-analytics"])
        self.assertEqual(result.skipped, ["console", "posthog", "clarity"])
        self.assertIsNone(result.remote_error)

        states = await sequencer.wait_settled()
        self.assertEqual(states, {"google-analytics": ProviderState.READY})
        self.assertEqual(ga.names(), ["first", "second"])
        for inactive in (ph, cl):
            self.assertEqual(inactive.init_calls, [])
            self.assertEqual(inactive.received, [])

    async def test_missing_required_key_keeps_provider_inactive(self):
        dispatch = make_dispatch()
        ph = product_analytics()
        resolver = ConfigResolver(
            {**LOCAL_DEFAULTS, "POSTHOG_API_KEY": "", "POSTHOG_HOST_URL": "x"},
        )
        sequencer = BootstrapSequencer(resolver=resolver, dispatch=dispatch, adapters=[ph])
        result = await sequencer.run()
        await sequencer.wait_settled()

        dispatch.track("anything")
        dispatch.page("/")
        dispatch.identify("u")
        self.assertEqual(result.registered, [])
        self.assertEqual(ph.init_calls, [])
        self.assertEqual(ph.received, [])

    async def test_disabled_flag_wins_over_present_keys(self):
        dispatch = make_dispatch()
        ga = web_analytics()
        resolver = ConfigResolver({**LOCAL_DEFAULTS, "GA_TRACKING_ID": "G-1", "GA_ENABLED": "false"})
        result = await BootstrapSequencer(resolver=resolver, dispatch=dispatch, adapters=[ga]).run()
        self.assertEqual(result.skipped, ["google-analytics"])

    async def test_remote_failure_falls_back_to_local_defaults(self):
        async def fetch():
            raise ConnectionError("edge function unreachable")

        dispatch = make_dispatch()
        ga = web_analytics()
        resolver = ConfigResolver({**LOCAL_DEFAULTS, "GA_TRACKING_ID": "G-LOCAL"}, fetch=fetch)
        sequencer = BootstrapSequencer(resolver=resolver, dispatch=dispatch, adapters=[ga])

        result = await sequencer.run()
        self.assertIn("edge function unreachable", result.remote_error)
        self.assertEqual(result.snapshot.source, "local")
        self.assertEqual(result.registered, ["google-analytics"])
        # run() only schedules initialize
        await result.tasks["google-analytics"]
        self.assertEqual(ga.init_calls[0].param("measurement_id"), "G-LOCAL")

    async def test_sync_initialize_failure_does_not_block_others(self):
        dispatch = make_dispatch()
        ga = web_analytics(sync_init_error=RuntimeError("gtag missing"))
        ph = product_analytics()
        cl = session_replay()
        resolver = ConfigResolver(
            {
                **LOCAL_DEFAULTS,
                "GA_TRACKING_ID": "G-1",
                "POSTHOG_API_KEY": "phc_1",
                "POSTHOG_HOST_URL": "https://eu.posthog.com",
                "CLARITY_PROJECT_ID": "abc",
            }
        )
        sequencer = BootstrapSequencer(resolver=resolver, dispatch=dispatch, adapters=[ga, ph, cl])
        await sequencer.run()
        dispatch.track("hello")
        states = await sequencer.wait_settled()

        self.assertEqual(
            states,
            {
                "google-analytics": ProviderState.FAILED,
                "posthog": ProviderState.READY,
                "clarity": ProviderState.READY,
            },
        )
        self.assertEqual(ph.names(), ["hello"])
        self.assertEqual(cl.names(), ["hello"])

    async def test_slow_provider_does_not_delay_fast_one(self):
        gate = asyncio.Event()
        dispatch = make_dispatch()
        slow = web_analytics(gate=gate)
        fast = session_replay()
        resolver = ConfigResolver({**LOCAL_DEFAULTS, "GA_TRACKING_ID": "G-1", "CLARITY_PROJECT_ID": "abc"})
        sequencer = BootstrapSequencer(resolver=resolver, dispatch=dispatch, adapters=[slow, fast])

        result = await sequencer.run()
        await result.tasks["clarity"]
        self.assertEqual(dispatch.state("clarity"), ProviderState.READY)
        self.assertEqual(dispatch.state("google-analytics"), ProviderState.PENDING)

        dispatch.track("while-slow-pending")
        self.assertEqual(fast.names(), ["while-slow-pending"])
        self.assertEqual(slow.received, [])

        gate.set()
        await sequencer.wait_settled()
        self.assertEqual(slow.names(), ["while-slow-pending"])

    async def test_concurrent_run_registers_once(self):
        gate = asyncio.Event()

        async def fetch():
            await gate.wait()
            return {"GA_TRACKING_ID": "G-1"}

        dispatch = make_dispatch()
        ga = web_analytics()
        sequencer = BootstrapSequencer(
            resolver=ConfigResolver(dict(LOCAL_DEFAULTS), fetch=fetch),
            dispatch=dispatch,
            adapters=[ga],
        )
        first = asyncio.create_task(sequencer.run())
        second = asyncio.create_task(sequencer.run())
        await asyncio.sleep(0)
        gate.set()
        a, b = await asyncio.gather(first, second)

        self.assertIs(a, b)
        self.assertEqual(len(dispatch.registry), 1)
        await sequencer.wait_settled()
        self.assertEqual(len(ga.init_calls), 1)

    async def test_run_is_idempotent(self):
        dispatch = make_dispatch()
        sequencer = BootstrapSequencer(resolver=ConfigResolver(dict(LOCAL_DEFAULTS)), dispatch=dispatch, adapters=[])
        first = await sequencer.run()
        self.assertIs(first, await sequencer.run())
        self.assertEqual(await sequencer.wait_settled(), {})


if __name__ == "__main__":
    unittest.main(verbosity=2)
