from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gitops_repo.database import Base


class GitRepository(Base):
    """Descriptor of a remote repository, addressed by (namespace, name)."""
    __tablename__ = "git_repositories"
    __table_args__ = (UniqueConstraint("namespace", "name", name="uq_git_repository_name"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    namespace: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    # Name of a GitSecret in the same namespace, unless secret_namespace is set
    secret_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    secret_namespace: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # Public repositories may be cloned without a secret
    public: Mapped[bool] = mapped_column(Boolean, default=False)
    insecure_skip_tls: Mapped[bool] = mapped_column(Boolean, default=False)
    ca_bundle: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
