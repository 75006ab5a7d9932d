"""
dbcloner - clone databases to prefixed copies with least-privilege credentials
"""

__version__ = "0.3.0"

from .core import DatabaseCloner
from .errors import ClonerError

__all__ = ["DatabaseCloner", "ClonerError"]
