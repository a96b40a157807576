from .environment import env_float, env_int, env_str  # noqa: F401
from .logging import mask_sensitive, setup_logging  # noqa: F401

__all__ = ["env_float", "env_int", "env_str", "mask_sensitive", "setup_logging"]
