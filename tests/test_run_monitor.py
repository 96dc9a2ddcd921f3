import asyncio
import os
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

# Ensure the repository root is on sys.path so 'rpc_uptime_monitor' can be imported
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from rpc_uptime_monitor.controllers.monitor_controller import STOP_MESSAGE  # noqa: E402
from rpc_uptime_monitor.scripts.run_monitor import NTFY_URL_ENV, load_config, parse_args, run  # noqa: E402

CONFIG_YAML = """
notify_url: https://ntfy.test/from-file
check_interval: 2.5
endpoints:
  - name: Alpha RPC
    url: https://alpha.test
    icon: "⚡"
  - name: Beta RPC
    url: https://beta.test
"""


class FakeController:
    def __init__(self, fail_with=None):
        self.fail_with = fail_with
        self.events = []

    async def run_forever(self):
        self.events.append("run")
        if self.fail_with is not None:
            raise self.fail_with
        while True:
            await asyncio.sleep(0.01)

    async def stop(self):
        self.events.append(STOP_MESSAGE)

    async def aclose(self):
        self.events.append("closed")


class TestLoadConfig(unittest.TestCase):
    def setUp(self):
        self._env = patch.dict(os.environ, {}, clear=False)
        self._env.start()
        os.environ.pop(NTFY_URL_ENV, None)

    def tearDown(self):
        self._env.stop()

    def write_config(self, text):
        fd, path = tempfile.mkstemp(suffix=".yaml")
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        self.addCleanup(os.remove, path)
        return path

    def test_defaults_without_file(self):
        config = load_config(parse_args([]))
        self.assertEqual(len(config.endpoints), 5)
        self.assertFalse(config.dry_run)

    def test_yaml_file(self):
        path = self.write_config(CONFIG_YAML)
        config = load_config(parse_args(["--config", path]))
        self.assertEqual([e.name for e in config.endpoints], ["Alpha RPC", "Beta RPC"])
        self.assertEqual(config.endpoints[0].icon, "⚡")
        self.assertEqual(config.check_interval, 2.5)
        self.assertEqual(config.notify_url, "https://ntfy.test/from-file")

    def test_cli_and_env_override_file(self):
        path = self.write_config(CONFIG_YAML)
        os.environ[NTFY_URL_ENV] = "https://ntfy.test/from-env"
        config = load_config(parse_args(["--config", path, "--interval", "0.5", "--notify-on-down", "--dry-run"]))
        self.assertEqual(config.notify_url, "https://ntfy.test/from-env")
        self.assertEqual(config.check_interval, 0.5)
        self.assertTrue(config.notify_on_down)
        self.assertTrue(config.dry_run)

    def test_empty_file_gives_defaults(self):
        path = self.write_config("")
        config = load_config(parse_args(["--config", path]))
        self.assertEqual(config.check_interval, 1.0)

    def test_missing_file(self):
        with self.assertRaises(SystemExit):
            load_config(parse_args(["--config", "/nonexistent/monitor.yaml"]))

    def test_invalid_config(self):
        path = self.write_config("check_interval: -1\n")
        with self.assertRaises(SystemExit):
            load_config(parse_args(["--config", path]))


class TestRun(unittest.IsolatedAsyncioTestCase):
    async def test_stop_event_sends_stop_notification_and_exits_zero(self):
        ctl = FakeController()
        stop_event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, stop_event.set)
        status = await run(ctl, stop_event)
        self.assertEqual(status, 0)
        self.assertEqual(ctl.events[0], "run")
        self.assertIn(STOP_MESSAGE, ctl.events)
        self.assertEqual(ctl.events[-1], "closed")

    async def test_fatal_error_exits_non_zero(self):
        ctl = FakeController(fail_with=RuntimeError("defect"))
        status = await run(ctl, asyncio.Event())
        self.assertEqual(status, 1)
        self.assertNotIn(STOP_MESSAGE, ctl.events)
        self.assertEqual(ctl.events[-1], "closed")


if __name__ == "__main__":
    unittest.main()
