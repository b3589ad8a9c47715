import tempfile
import unittest
from pathlib import Path

from kalumacli.errors import DeviceTimeoutError, TransferError
from kalumacli.protocol import Downloader, Evaluator
from kalumacli.transport import BufferedSerial

from fake_device import FakeKaluma


class DownloaderTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.target = Path(self.tmp.name) / "out.bin"
        self.device = FakeKaluma()
        self.transport = BufferedSerial(
            "COM9", serial_factory=lambda *a, **k: self.device
        ).open()
        self.evaluator = Evaluator(self.transport, timeout=0.2)

    def tearDown(self) -> None:
        self.transport.close()
        self.tmp.cleanup()

    def test_downloads_by_offset(self) -> None:
        data = bytes(range(256)) * 4
        self.device.files["log.bin"] = bytearray(data)

        read = Downloader(self.evaluator, chunk_size=300).download("log.bin", self.target)

        self.assertEqual(read, 1024)
        self.assertEqual(self.target.read_bytes(), data)
        ranges = [(offset, length) for _, offset, length in self.device.calls_named("read")]
        self.assertEqual(ranges, [(0, 300), (300, 300), (600, 300), (900, 124)])

    def test_zero_length_file_needs_no_chunks(self) -> None:
        self.device.files["empty"] = bytearray()
        read = Downloader(self.evaluator).download("empty", self.target)
        self.assertEqual(read, 0)
        self.assertEqual(self.target.read_bytes(), b"")
        self.assertEqual(self.device.calls_named("read"), [])
        self.assertEqual(len(self.device.calls_named("stat")), 1)

    def test_missing_remote_file_fails_on_stat(self) -> None:
        with self.assertRaises(TransferError) as ctx:
            Downloader(self.evaluator).download("nope.txt", self.target)
        self.assertEqual(ctx.exception.operation, "stat")
        self.assertIn("ENOENT", str(ctx.exception))
        self.assertFalse(self.target.exists())

    def test_shrinking_file_fails_and_keeps_partial_output(self) -> None:
        self.device.files["grow.txt"] = bytearray(b"0123456789" * 3)

        def truncate_after_first_read(name, args):
            if name == "read" and args[1] == 0:
                del self.device.files["grow.txt"][25:]

        self.device.after_call = truncate_after_first_read
        with self.assertRaises(TransferError) as ctx:
            Downloader(self.evaluator, chunk_size=10).download("grow.txt", self.target)

        self.assertEqual(ctx.exception.offset, 10)
        self.assertEqual(ctx.exception.chunk_index, 1)
        self.assertIn("changed", str(ctx.exception))
        self.assertEqual(self.target.read_bytes(), b"0123456789")

    def test_growing_file_is_not_tolerated(self) -> None:
        self.device.files["grow.txt"] = bytearray(b"abc")

        def append_after_stat(name, args):
            if name == "stat":
                self.device.files["grow.txt"].extend(b"def")

        self.device.after_call = append_after_stat
        with self.assertRaises(TransferError):
            Downloader(self.evaluator).download("grow.txt", self.target)

    def test_timeouts_exhaust_retries(self) -> None:
        self.device.files["a"] = bytearray(b"abc")

        def go_silent(name, args):
            if name == "stat":
                self.device.responsive = False

        self.device.after_call = go_silent
        downloader = Downloader(Evaluator(self.transport, timeout=0.02), retries=1)
        with self.assertRaises(TransferError) as ctx:
            downloader.download("a", self.target)
        self.assertIsInstance(ctx.exception.__cause__, DeviceTimeoutError)
        self.assertEqual(ctx.exception.operation, "get")

    def test_late_replies_fail_instead_of_shifting_chunks(self) -> None:
        self.device.files["abc.bin"] = bytearray(b"A" * 10 + b"B" * 10 + b"C" * 10)
        self.device.lag_replies = True
        downloader = Downloader(Evaluator(self.transport, timeout=0.05), chunk_size=10, retries=2)
        with self.assertRaises(TransferError) as ctx:
            downloader.download("abc.bin", self.target)
        self.assertIsInstance(ctx.exception.__cause__, DeviceTimeoutError)
        self.assertFalse(self.target.exists())

    def test_reports_progress(self) -> None:
        self.device.files["p"] = bytearray(b"x" * 5)
        seen = []
        Downloader(
            self.evaluator, chunk_size=2, on_progress=lambda s: seen.append(s.transferred)
        ).download("p", self.target)
        self.assertEqual(seen, [2, 4, 5])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
