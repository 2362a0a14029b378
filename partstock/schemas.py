from __future__ import annotations

from pydantic import BaseModel, Field, model_validator


class Category(BaseModel):
    id: int
    name: str


class Footprint(BaseModel):
    id: int
    name: str


class Part(BaseModel):
    id: int
    category_id: int
    footprint_id: int | None = None
    mpn: str | None = None
    value: float | None = None
    volt_rating: float | None = None
    watt_rating: float | None = None
    amp_rating: float | None = None
    percent_tol: float | None = None
    stats: str | None = None
    comments: str | None = None
    created_at: str


class Location(BaseModel):
    id: int
    name: str
    description: str | None = None


class StockEntry(BaseModel):
    id: int
    part_id: int
    location_id: int | None = None
    quantity: int = Field(ge=0)
    staged: int | None = Field(default=None, ge=0)
    updated_at: str


class InventoryRow(BaseModel):
    id: int
    mpn: str | None = None
    category: str | None = None
    footprint: str | None = None
    value: float | None = None
    location: str | None = None
    quantity: int | None = None
    staged: int | None = None
    comments: str | None = None


class InventoryQuery(BaseModel):
    category: str = ""
    footprint: str = ""
    min_value: float | None = None
    max_value: float | None = None
    text: str = ""
    location: str = ""

    @model_validator(mode="after")
    def check_value_range(self):
        if self.min_value is not None and self.max_value is not None and self.min_value > self.max_value:
            raise ValueError("min_value must not exceed max_value")
        return self
