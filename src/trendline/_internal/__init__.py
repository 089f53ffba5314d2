"""Internal implementation modules. Not part of the public API."""

from trendline._internal.completion_client import CompletionClient
from trendline._internal.config import ConfigManager, ProjectSettings
from trendline._internal.storage import StorageEngine

__all__ = ["CompletionClient", "ConfigManager", "ProjectSettings", "StorageEngine"]
