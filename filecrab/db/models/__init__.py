from filecrab.db.models.asset import Asset
from filecrab.db.models.text import Text

__all__ = ["Asset", "Text"]
