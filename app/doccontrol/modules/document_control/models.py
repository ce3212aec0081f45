from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.doccontrol.models import Base

# Document.status values
DRAFT = "Draft"
IN_APPROVAL = "In Approval"
RELEASED = "Released"
OBSOLETE = "Obsolete"

# Approver.status values
PENDING = "Pending"
APPROVED = "Approved"
REJECTED = "Rejected"


class DocumentType(Base):
    __tablename__ = "document_types"
    __table_args__ = (
        UniqueConstraint("tenant_id", "prefix", name="uq_document_type_prefix"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    prefix: Mapped[str] = mapped_column(String(10), nullable=False)  # e.g. "FORM"
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Only ever advanced by numbering.allocate (compare-and-set), never decremented.
    next_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class Document(Base):
    """
    One version of a controlled document.

    A lineage is every row sharing (tenant_id, document_number). Prototype
    lineages run vA..vZ, Production lineages v1..v999. A Production lineage
    created by promotion keeps a back-reference to the Prototype number it
    came from.
    """

    __tablename__ = "documents"
    __table_args__ = (
        UniqueConstraint("tenant_id", "document_number", "version", name="uq_document_number_version"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    document_type_id: Mapped[int] = mapped_column(
        ForeignKey("document_types.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    document_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)  # e.g. "FORM-00001"
    version: Mapped[str] = mapped_column(String(16), nullable=False)  # e.g. "vA", "v1"
    is_production: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    project_code: Mapped[str | None] = mapped_column(String(16), nullable=True)  # P-#####

    # Draft -> In Approval -> Released -> Obsolete
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=DRAFT)

    created_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    released_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    promoted_from_document_id: Mapped[int | None] = mapped_column(
        ForeignKey("documents.id", ondelete="SET NULL"), nullable=True
    )
    promoted_from_document_number: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": row_version}

    document_type: Mapped[DocumentType] = relationship("DocumentType", lazy="selectin")

    approvers: Mapped[list["Approver"]] = relationship(
        "Approver",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Approver.id",
    )

    files: Mapped[list["DocumentFile"]] = relationship(
        "DocumentFile",
        back_populates="document",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def label(self) -> str:
        return f"{self.document_number}{self.version}"


class Approver(Base):
    __tablename__ = "approvers"
    __table_args__ = (
        UniqueConstraint("document_id", "user_id", name="uq_approver_document_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)

    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    user_email: Mapped[str] = mapped_column(String(320), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PENDING)
    comments: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    action_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": row_version}

    # lazy: a populate_existing re-read of approvers must not refresh the parent document
    document: Mapped[Document] = relationship("Document", back_populates="approvers", lazy="select")


class DocumentFile(Base):
    __tablename__ = "document_files"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id", ondelete="CASCADE"), nullable=False, index=True)

    storage_key: Mapped[str] = mapped_column(String(512), nullable=False)
    filename: Mapped[str] = mapped_column(String(255), nullable=False)
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False)
    content_type: Mapped[str] = mapped_column(String(128), nullable=False, default="application/octet-stream")
    sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False)

    # clean | skipped (no scanner configured)
    scan_status: Mapped[str] = mapped_column(String(16), nullable=False, default="skipped")

    uploaded_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    uploaded_by_user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="RESTRICT"), nullable=False)

    document: Mapped[Document] = relationship("Document", back_populates="files", lazy="select")
