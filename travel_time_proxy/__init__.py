"""Travel-time proxy: driving and MBTA Red Line times behind one small API."""

from .app import create_app
from .settings import VERSION, Settings, load_settings

__all__ = ["create_app", "load_settings", "Settings", "VERSION"]
__version__ = VERSION
