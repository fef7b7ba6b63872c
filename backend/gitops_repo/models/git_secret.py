from datetime import datetime
from enum import Enum
from uuid import uuid4

from sqlalchemy import JSON, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gitops_repo.database import Base


class SecretType(str, Enum):
    BASIC_AUTH = "basic-auth"
    OPAQUE = "opaque"  # service-account style token
    SECRET_TEXT = "secret-text"


class GitSecret(Base):
    __tablename__ = "git_secrets"
    __table_args__ = (UniqueConstraint("namespace", "name", name="uq_git_secret_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    namespace: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(50), default=SecretType.BASIC_AUTH.value)
    # basic-auth: username/password, opaque: token, secret-text: secret
    data: Mapped[dict] = mapped_column(JSON, default=dict)
    author_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    author_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
