from sqlalchemy import String, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import Base, TimestampMixin


class DeliveryRecord(Base, TimestampMixin):
    __tablename__ = "deliveries"

    id: Mapped[str] = mapped_column(String, primary_key=True)  # assigned by the pharmacy system
    callback: Mapped[str] = mapped_column(Text, nullable=False)  # confirmation endpoint
    pharmacist: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(30), nullable=False, default="in_transit")
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # written together with status=delivered
    recipient_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    recipient_signature: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_at: Mapped[str | None] = mapped_column(Text, nullable=True)  # exact string that was hashed
    pharmacist_reply: Mapped[str | None] = mapped_column(Text, nullable=True)

    # written together with status=onchain_recorded
    onchain_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    onchain_txhash: Mapped[str | None] = mapped_column(String(66), nullable=True)

    onchain_error: Mapped[str | None] = mapped_column(Text, nullable=True)
