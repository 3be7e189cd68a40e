"""Built-in step components: readers, processors, writers and tasklets.

Components are looked up by name through the PluginManager, so jobs can be
assembled from settings files.
"""

from hopper.plugins.config_base import PluginConfig, PluginConfigError
from hopper.plugins.hookspecs import hookimpl
from hopper.plugins.manager import PluginManager

__all__ = ["PluginConfig", "PluginConfigError", "PluginManager", "hookimpl"]
