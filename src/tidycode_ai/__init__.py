"""tidycode AI - one client runtime over several AI vendors."""

from .actions import ActionContext, ActionManager, ActionResult, register_default_actions  # noqa: F401
from .config import ConfigError, RuntimeConfig  # noqa: F401
from .manager import ManagerConfig, ProviderManager, ProviderSettings  # noqa: F401
from .runtime import AIRuntime  # noqa: F401

__all__ = [
    "AIRuntime",
    "ActionContext",
    "ActionManager",
    "ActionResult",
    "ConfigError",
    "ManagerConfig",
    "ProviderManager",
    "ProviderSettings",
    "RuntimeConfig",
    "__version__",
    "register_default_actions",
]

__version__ = "0.1.0"
