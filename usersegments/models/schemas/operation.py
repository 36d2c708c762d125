from datetime import datetime

from pydantic import BaseModel, ConfigDict

from usersegments.models.orm.membership import Operation


class OperationLogModel(BaseModel):
    """A single entry of a user's segment operation history."""

    user_id: int
    segment_name: str
    operation: Operation
    operation_time: datetime

    model_config = ConfigDict(from_attributes=True)

    def to_report_line(self) -> str:
        return (
            f"({self.user_id}, {self.segment_name}, "
            f"{self.operation.value}, {self.operation_time})"
        )
