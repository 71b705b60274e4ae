"""
Editorial model: content owned by its author.
"""
from sqlalchemy import String, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class Editorial(Base, TimestampMixin):
    """
    An editorial item. author_id is the owner compared by ownership-scoped
    permissions such as journal:edit:own.
    """
    __tablename__ = "editorials"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")

    author_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    author: Mapped["User"] = relationship(  # type: ignore
        "User",
        foreign_keys=[author_id],
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<Editorial(id={self.id}, title={self.title!r}, author_id={self.author_id})>"
