"""Meeting persistence model -- tenant-scoped table for meeting rows.

Uses TenantBase so the "tenant" placeholder schema is remapped at runtime
to the actual tenant schema via schema_translate_map. Membership and
library state live with their own collaborators, so there are no
foreign keys here.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.bbb_meetings.core.database import TenantBase


class MeetingModel(TenantBase):
    """One BBB meeting room.

    ``created`` and ``last_modified`` are epoch milliseconds;
    ``last_modified`` is the rank used by the meeting libraries.
    """

    __tablename__ = "bbb_meetings"
    __table_args__ = (
        Index("idx_bbb_meetings_created_by", "created_by"),
        {"schema": "tenant"},
    )

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    tenant_alias: Mapped[str] = mapped_column(String(255), nullable=False)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str] = mapped_column(String(1000), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    record: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    all_moderators: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    wait_moderator: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    visibility: Mapped[str] = mapped_column(String(20), nullable=False)
    created: Mapped[int] = mapped_column(BigInteger, nullable=False)
    last_modified: Mapped[int] = mapped_column(BigInteger, nullable=False)
