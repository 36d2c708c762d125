from sqlalchemy import inspect
from sqlalchemy.orm import declarative_base


class KeyedRepr:
    """Represent a row by its primary key, e.g. ``<MembershipORM user_id=1 segment_name='a'>``."""

    def __repr__(self) -> str:
        state = inspect(self)
        key = " ".join(
            f"{column.key}={state.dict.get(column.key)!r}"
            for column in state.mapper.primary_key
        )
        return f"<{self.__class__.__name__} {key}>"


Base = declarative_base(cls=KeyedRepr)
