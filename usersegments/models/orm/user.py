from sqlalchemy import Column, Integer

from .base import Base


class UserORM(Base):
    __tablename__ = "users"

    # Ids are supplied by callers, never generated here
    id = Column(Integer, primary_key=True, autoincrement=False)
