"""
dataverse-ops - production sync and in-place upgrades for Dataverse
"""

__version__ = "0.1.0"

from .errors import DvOpsError
from .sync import ProductionSync
from .upgrade import DataverseUpgrade

__all__ = ["DataverseUpgrade", "DvOpsError", "ProductionSync"]
