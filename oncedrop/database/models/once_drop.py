"""
OnceDropState Model - Durable Once-Only Reward Slot
===================================================

Purpose
-------
One row per configured reward. Records whether the reward has ever been
produced, when it was last granted or collected, and by whom.

Schema Design
-------------
- `keyname` is the primary key; there is exactly one row per reward key
- `dropped` mirrors the in-process "already granted" flag
- `last_drop_time` is unix epoch seconds; 0 means never granted
- `last_killer` is a sanitized display name (max 63 chars, no quotes)
"""

from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, Boolean, String, false, text
from sqlalchemy.orm import Mapped, mapped_column

from oncedrop.core.database.base import Base

KEYNAME_MAX_LENGTH = 64
ACTOR_NAME_COLUMN_LENGTH = 64


class OnceDropState(Base):
    __tablename__ = "once_drop_state"

    keyname: Mapped[str] = mapped_column(
        String(KEYNAME_MAX_LENGTH),
        primary_key=True,
        comment="Fixed identifier of the reward's once-only slot",
    )

    dropped: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=false(),
        comment="Whether the reward has ever been produced",
    )

    last_drop_time: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=0,
        server_default=text("0"),
        comment="Epoch seconds of the latest grant or collection; 0 if never",
    )

    last_killer: Mapped[Optional[str]] = mapped_column(
        String(ACTOR_NAME_COLUMN_LENGTH),
        nullable=True,
        default=None,
        comment="Sanitized name of the player tied to the latest grant or collection",
    )

    def __repr__(self) -> str:
        return (
            f"<OnceDropState("
            f"keyname='{self.keyname}', "
            f"dropped={self.dropped}, "
            f"last_drop_time={self.last_drop_time}, "
            f"last_killer={self.last_killer!r}"
            f")>"
        )
