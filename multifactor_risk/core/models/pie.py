"""
Pie model: the four-category scored breakdown backing one risk assessment.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field

SLICE_WEIGHT = 25
SLICE_MAX_VALUE = 4


class Slice(BaseModel):
    """
    One named risk category in a pie.

    Attributes:
        name: Category label (e.g. "Clinical Risk")
        weight: Share of the pie (the four default slices sum to 100)
        value: Score for the category (1-4)
        max_value: Highest possible score, serialized as "maxValue"
    """

    name: str = Field(..., min_length=1)
    weight: int = SLICE_WEIGHT
    value: int
    max_value: int = Field(SLICE_MAX_VALUE, alias="maxValue")

    class Config:
        populate_by_name = True
        frozen = True


class Pie(BaseModel):
    """
    Scored visualization artifact for a single risk factor survey.

    Created once per complete record, persisted by the pie store and
    never modified afterwards. Identity is not content-addressed: two
    pies built from the same record get different ids and timestamps.

    Attributes:
        id: Random identifier (UUID hex)
        created: When the pie was built
        patient: URL of the FHIR Patient resource the pie belongs to
        slices: Ordered category slices
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    created: datetime = Field(default_factory=datetime.now)
    patient: str
    slices: list[Slice] = Field(default_factory=list)

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "4f0c8b5e2a7d4f8d9b8a2b7e6c1d0a93",
                "created": "2016-04-02T10:15:00",
                "patient": "http://localhost:3001/Patient/56fd63cdac1c5d77f6f695a1",
                "slices": [
                    {"name": "Clinical Risk", "weight": 25, "value": 3, "maxValue": 4},
                    {"name": "Functional and Environmental Risk", "weight": 25, "value": 2, "maxValue": 4},
                    {"name": "Psychosocial and Mental Health Risk", "weight": 25, "value": 1, "maxValue": 4},
                    {"name": "Utilization Risk", "weight": 25, "value": 4, "maxValue": 4},
                ],
            }
        }

    def to_json_dict(self) -> dict:
        """JSON-ready dict using the wire field names (maxValue)."""
        return self.model_dump(mode="json", by_alias=True)
