import os
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from chainscope.config import Settings
from chainscope.fallback import MINIMAL_RPC, load_fallback_dataset, minimal_fallback_record
from chainscope.utils import is_safe_url


class TestFallbackDataset(unittest.TestCase):

    def test_bundled_dataset(self):
        records = load_fallback_dataset(settings=Settings())
        by_id = {r.chain_id: r for r in records}
        self.assertEqual(len(by_id), 19)
        self.assertTrue(all(r.verified for r in records))
        self.assertTrue(by_id[11155111].is_testnet)
        self.assertFalse(by_id[42161].is_testnet)
        self.assertEqual(by_id[42161].parent.chain, "eip155-1")
        self.assertTrue(by_id[42161].bridges)

    def test_bundled_rpcs_are_usable(self):
        for record in load_fallback_dataset(settings=Settings()):
            self.assertTrue(record.rpc, record.chain_id)
            for url in record.rpc:
                self.assertNotIn("${", url)

    def test_missing_file(self):
        with self.assertLogs("chainscope.fallback", level="ERROR"):
            records = load_fallback_dataset(Path("/nonexistent/chains.json"), Settings())
        self.assertEqual(records, [minimal_fallback_record()])

    def test_corrupt_file(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "chains.json"
            path.write_text("{not json", encoding="utf-8")
            with self.assertLogs("chainscope.fallback", level="ERROR"):
                records = load_fallback_dataset(path, Settings())
        self.assertEqual([r.chain_id for r in records], [1])

    def test_plain_list_accepted(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "chains.json"
            path.write_text('[{"chainId": 7, "name": "Seven", "nativeCurrency": {"symbol": "SVN"}}]', encoding="utf-8")
            records = load_fallback_dataset(path, Settings())
        self.assertEqual([r.chain_id for r in records], [7])

    def test_minimal_record(self):
        record = minimal_fallback_record()
        self.assertEqual(record.rpc, (MINIMAL_RPC,))
        self.assertTrue(is_safe_url(MINIMAL_RPC)[0])
        self.assertTrue(record.verified)


if __name__ == "__main__":
    unittest.main()
