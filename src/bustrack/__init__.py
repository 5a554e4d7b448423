"""bustrack - live bus fleet position and ETA aggregation engine."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("bustrack")
except PackageNotFoundError:
    __version__ = "0+local"
