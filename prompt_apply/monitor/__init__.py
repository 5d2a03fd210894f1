from .change_monitor import ChangeMonitor, ChangeNotifier, ChangeQueue, WatchdogNotifier
from .snapshot import EXCLUDED_DIRS, compare_snapshots, take_snapshot

__all__ = [
    "ChangeMonitor",
    "ChangeNotifier",
    "ChangeQueue",
    "WatchdogNotifier",
    "EXCLUDED_DIRS",
    "compare_snapshots",
    "take_snapshot",
]
