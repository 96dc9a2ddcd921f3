import sys
from pathlib import Path

# Ensure the repository root is on sys.path so 'rpc_uptime_monitor' can be imported
repo_root = Path(__file__).resolve().parents[1]
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))


def test_imports():
    # Smoke test to ensure modules import
    import importlib

    modules = [
        "rpc_uptime_monitor.controllers.monitor_controller",
        "rpc_uptime_monitor.executors.health_check_executor",
        "rpc_uptime_monitor.executors.notification_executor",
        "rpc_uptime_monitor.scripts.run_monitor",
        "rpc_uptime_monitor.utils.rpc_utils",
    ]

    for m in modules:
        importlib.import_module(m)
