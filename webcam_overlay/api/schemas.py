import pydantic
from pydantic import BaseModel


class ModelSelect(BaseModel):
    name: str = pydantic.Field(
        min_length=1,
        json_schema_extra={"example": "yolov8n"},
        description="Directory name under the models dir",
    )


class FocusUpdate(BaseModel):
    value: float = pydantic.Field(
        json_schema_extra={"example": 120},
        description="Manual focus distance, within the range reported by GET /focus",
    )
