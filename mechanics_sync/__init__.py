"""
Mechanics Sync package.
BoardGameGeek mechanics cache for the board game cafe catalog.
"""
from mechanics_sync.config import get_settings, Settings
from mechanics_sync.models import EnrichmentResult, MechanicsCache

__version__ = "1.0.0"
__all__ = ["get_settings", "Settings", "EnrichmentResult", "MechanicsCache"]
