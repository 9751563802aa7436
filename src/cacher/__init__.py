"""cacher: Versioned artifact cache with remote, local and installed tiers."""

__version__ = "0.1.0"

from cacher.cacher import Cacher, OperationResult
from cacher.config import CacherConfig

__all__ = ["Cacher", "CacherConfig", "OperationResult", "__version__"]
