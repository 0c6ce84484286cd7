"""
Shared module foundations: base service and base repository patterns.
"""

from oncedrop.modules.shared.base_repository import BaseRepository
from oncedrop.modules.shared.base_service import BaseService

__all__ = ["BaseService", "BaseRepository"]
