import asyncio
import io
import json
import os
import sys
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest.mock import patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from chainscope import refresh
from fakes import OFFICIAL_RPC, build_service


class TestChainscopeService(unittest.IsolatedAsyncioTestCase):

    async def test_components_share_state(self):
        service = build_service()
        self.assertIs(service.monitor.prober, service.prober)
        self.assertIs(service.prober.rate_limiter, service.rate_limiter)
        self.assertIs(service.merger.fetcher, service.fetcher)
        self.assertIs(service.merger.monitor, service.monitor)
        await service.aclose()

    async def test_background_refresh(self):
        service = build_service(popular_chain_ids=(1,), health_refresh_max_chains=1)
        await service.merger.build_registry()

        task = service.start_background_refresh()
        self.assertIs(service.start_background_refresh(), task)
        snapshot = await task

        self.assertIsNotNone(snapshot.health_refreshed_at)
        self.assertEqual(service.wallet_rpcs(service.merger.get_chain(1)), [OFFICIAL_RPC])
        self.assertEqual(service.rpc_info(service.merger.get_chain(1)).online, 1)
        await service.aclose()

    async def test_background_failure_is_logged(self):
        service = build_service()

        async def broken(chain_ids=None):
            raise RuntimeError("probe pool exploded")

        with patch.object(service.merger, "refresh_health", new=broken):
            with self.assertLogs("chainscope.service", level="ERROR"):
                task = service.start_background_refresh()
                with self.assertRaises(RuntimeError):
                    await task
        await service.aclose()

    async def test_close_cancels_background_pass(self):
        async with build_service() as service:
            await service.merger.build_registry()
            task = service.start_background_refresh()
        self.assertTrue(task.cancelled() or task.done())
        self.assertTrue(service.session.closed)


class TestRefreshCommand(unittest.TestCase):

    def test_build_report(self):
        service = build_service()
        asyncio.run(service.merger.build_registry())
        report = refresh.build_report(service, [1, 999, 424242])

        self.assertFalse(report["used_fallback"])
        self.assertEqual(report["stats"]["total_chains"], 3)
        self.assertEqual([c["chain_id"] for c in report["chains"]], [1, 999])
        self.assertEqual(report["chains"][0]["wallet_rpcs"], [OFFICIAL_RPC])
        self.assertEqual(report["chains"][1]["wallet_rpcs"], [])

        out = io.StringIO()
        with redirect_stdout(out):
            refresh.print_report(report)
        self.assertIn("Chains: 3", out.getvalue())
        self.assertIn("(no wallet-safe RPC)", out.getvalue())

    def test_main_writes_report(self):
        service = build_service()
        with tempfile.TemporaryDirectory() as tmp:
            path = os.path.join(tmp, "report.json")
            out = io.StringIO()
            with patch.object(refresh.ChainscopeService, "create", return_value=service), redirect_stdout(out):
                refresh.main(["--chain", "1", "--output", path])
            with open(path) as f:
                report = json.load(f)

        self.assertIn("--- Starting: Build Registry ---", out.getvalue())
        self.assertIn("--- Finished: Health Refresh", out.getvalue())
        self.assertEqual(report["chains"][0]["rpc_health"]["reliability_score_pct"], 100)
        self.assertTrue(service.session.closed)

    def test_no_probe(self):
        service = build_service()
        out = io.StringIO()
        with patch.object(refresh.ChainscopeService, "create", return_value=service), redirect_stdout(out):
            refresh.main(["--no-probe"])
        self.assertIn("Skipping Health Refresh", out.getvalue())
        self.assertEqual(service.session.urls("POST"), [])


if __name__ == "__main__":
    unittest.main()
