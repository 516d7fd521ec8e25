"""Platform directory utilities for depvendor."""

from platformdirs import PlatformDirs

APP_DIRS = PlatformDirs("depvendor", "depvendor")
