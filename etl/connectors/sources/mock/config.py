from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

FieldType = Literal[
    "id",
    "name",
    "email",
    "phone",
    "address",
    "company",
    "date",
    "datetime",
    "number",
    "decimal",
    "boolean",
    "text",
    "uuid",
    "url",
    "currency",
    "percentage",
    "enum",
]


class MockConnection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    record_count: int = Field(gt=0)
    batch_size: int | None = Field(default=None, gt=0)
    seed: int | None = None


class MockFieldOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    min: float | None = None
    max: float | None = None
    decimals: int = Field(default=2, ge=0)
    enum_values: list[str] = Field(default_factory=list)
    prefix: str = ""
    suffix: str = ""
    format: str | None = None
    length: int | None = Field(default=None, gt=0)
    nullable: bool = False
    null_probability: float = Field(default=0.0, ge=0, le=1)


class MockField(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = Field(min_length=1)
    type: FieldType
    options: MockFieldOptions = Field(default_factory=MockFieldOptions)


class MockOptions(BaseModel):
    model_config = ConfigDict(extra="ignore")

    fields: list[MockField] = Field(min_length=1)
