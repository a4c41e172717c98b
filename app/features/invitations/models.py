"""
Invitation token model.
"""
import enum
from datetime import datetime
from sqlalchemy import String, ForeignKey, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, generate_ulid


class InvitationStatus(str, enum.Enum):
    """
    Lifecycle of an invitation.

    Only PENDING → ACCEPTED and PENDING → EXPIRED are allowed; both targets are terminal.
    Cancelling an invitation moves it to EXPIRED.
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"


class InvitationToken(Base):
    __tablename__ = "invitation_tokens"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # 64 hex chars (256 bits) from secrets.token_hex
    token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)

    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False)

    organization_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    status: Mapped[InvitationStatus] = mapped_column(
        SQLEnum(InvitationStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        default=InvitationStatus.PENDING,
        nullable=False,
        index=True,
    )

    # Naive UTC, set by the store
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_by: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    organization: Mapped["Organization"] = relationship("Organization", lazy="selectin")  # type: ignore

    def __repr__(self) -> str:
        return f"<InvitationToken(id={self.id}, email={self.email!r}, role={self.role}, status={self.status})>"
