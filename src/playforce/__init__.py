from importlib.metadata import PackageNotFoundError, version

from .session import SessionContext

try:
    __version__ = version("playforce")
except PackageNotFoundError:  # pragma: no cover
    __version__ = "unknown"

__all__ = ["SessionContext", "__version__"]
