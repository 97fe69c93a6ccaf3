"""Device Session - pooled SSH sessions and command execution for named devices."""
import importlib.metadata


__version__ = importlib.metadata.version("device-session")
