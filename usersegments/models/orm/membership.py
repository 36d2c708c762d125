import enum

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    PrimaryKeyConstraint,
    String,
)

from .base import Base


class Operation(str, enum.Enum):
    ADD = "add"
    DELETE = "delete"


class MembershipORM(Base):
    __tablename__ = "user_segments"

    user_id = Column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    segment_name = Column(
        String(255), ForeignKey("segments.name", ondelete="CASCADE"), nullable=False
    )

    # Naive UTC; NULL means the membership never expires
    expire = Column(DateTime, nullable=True, index=True)

    __table_args__ = (
        PrimaryKeyConstraint("user_id", "segment_name", name="user_segments_pkey"),
    )


class OperationLogORM(Base):
    """Append-only audit row. No foreign keys: entries outlive the rows they describe."""

    __tablename__ = "user_segments_log"

    # Surrogate key, preserves insertion order
    id = Column(Integer, primary_key=True, autoincrement=True)

    user_id = Column(Integer, nullable=False, index=True)
    segment_name = Column(String(255), nullable=False)
    operation = Column(
        Enum(
            Operation,
            name="segment_operation",
            native_enum=False,
            length=20,
            values_callable=lambda enum_cls: [member.value for member in enum_cls],
        ),
        nullable=False,
    )
    operation_time = Column(DateTime, nullable=False, index=True)
