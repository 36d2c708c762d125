from sqlalchemy import Column, Float, String

from .base import Base


class SegmentORM(Base):
    __tablename__ = "segments"

    name = Column(String(255), primary_key=True)

    # Percentage used when the segment was populated by cohort assignment
    amount = Column(Float, nullable=True)
