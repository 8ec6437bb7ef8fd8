"""chesslink - A typed asyncio client for the Lichess web API."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("chesslink")
except PackageNotFoundError:
    __version__ = "0.1.0"  # Fallback for development

__all__ = [
    "__version__",
    # Results
    "Result",
    "One",
    "Many",
    "NoneMatch",
    "Fail",
    "ErrorInfo",
    "ErrorKind",
    "ResultError",
    # Requests
    "EndpointDescriptor",
    "get_endpoint",
    "RequestPipeline",
    "Scope",
    # Config
    "Config",
    "load_config",
]


# Lazy imports to avoid circular dependencies
def __getattr__(name: str) -> object:
    """Lazy import module components."""
    if name in ("Result", "One", "Many", "NoneMatch", "Fail", "ErrorInfo", "ErrorKind", "ResultError"):
        from . import result
        return getattr(result, name)
    elif name in ("EndpointDescriptor", "get_endpoint"):
        from .endpoints import EndpointDescriptor, get_endpoint
        return {"EndpointDescriptor": EndpointDescriptor, "get_endpoint": get_endpoint}[name]
    elif name == "RequestPipeline":
        from .pipeline import RequestPipeline
        return RequestPipeline
    elif name == "Scope":
        from .scopes import Scope
        return Scope
    elif name in ("Config", "load_config"):
        from .config import Config, load_config
        return {"Config": Config, "load_config": load_config}[name]
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
