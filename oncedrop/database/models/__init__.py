"""ORM models. Importing this package registers every table on `Base.metadata`."""

from oncedrop.database.models.once_drop import OnceDropState

__all__ = ["OnceDropState"]
