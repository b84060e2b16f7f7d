"""owl.version"""

WATCHER_VERSION = "0.1.0"
