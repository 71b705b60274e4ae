"""
User model with ULID primary keys.
"""
from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


class User(Base, TimestampMixin):
    """
    User model representing accounts that can log in.

    Uses ULID instead of auto-incrementing integers for better distributed systems support.
    Emails are stored lower-cased and trimmed.
    """
    __tablename__ = "users"

    # Primary key using ULID (Universally Unique Lexicographically Sortable Identifier)
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)

    # bcrypt hash, never serialized
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)

    # Relationships
    roles: Mapped[list["Role"]] = relationship(  # type: ignore
        "Role",
        secondary="user_roles",
        back_populates="users",
        lazy="selectin"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email!r})>"
