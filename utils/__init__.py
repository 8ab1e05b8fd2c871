"""Shared utilities for the pricing decision core.

``.env`` files are loaded by ``PricingCoreConfig.from_env``, not on import.
"""

from .env import load_project_dotenv  # noqa: F401
from .logger import get_logger  # noqa: F401
