"""Structured output schemas validated at every stage boundary."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Union
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator

Year = Union[int, str]
Percentage = Union[int, float, str]


class Constraints(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    budget: Optional[str] = None
    must_have: List[str] = Field(default_factory=list)
    preferred: List[str] = Field(default_factory=list)

    @field_validator("budget", mode="before")
    @classmethod
    def _budget_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return str(value)
        return value


class SearchIntent(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    user_country: str
    user_country_reasoning: Optional[str] = None
    primary_focus: str
    constraints: Constraints = Field(default_factory=Constraints)
    interesting_properties: List[Dict[str, Any]] = Field(default_factory=list)


class CandidateSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    make: str
    model: str
    year: Year
    configuration: Optional[str] = None
    precise_model: Optional[str] = None
    pinned: bool = False
    constraints_satisfaction: Dict[str, Any] = Field(default_factory=dict)
    percentage: Optional[Percentage] = None


class SuggestionsSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    analysis: str = ""
    choices: List[CandidateSchema]
    pinned_cars: List[CandidateSchema] = Field(default_factory=list)


def _property_id(label: str, index: int) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", label.strip().lower()).strip("_")
    return slug or f"property_{index}"


class VehicleProperty(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    label: str = Field(default="", alias="translatedLabel")
    value: str = ""

    @field_validator("value", mode="before")
    @classmethod
    def _value_text(cls, value: Any) -> Any:
        if value is None:
            return ""
        if not isinstance(value, str):
            return str(value)
        return value


class ElaborationSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    price: Optional[str] = None
    price_when_new: Optional[str] = None
    type: Optional[str] = None
    market_availability: Optional[str] = None
    vehicle_properties: Dict[str, VehicleProperty] = Field(default_factory=dict)
    strengths: List[str] = Field(default_factory=list)
    weaknesses: List[str] = Field(default_factory=list)
    reason: str

    @field_validator("price", "price_when_new", mode="before")
    @classmethod
    def _price_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @field_validator("vehicle_properties", mode="before")
    @classmethod
    def _properties_map(cls, value: Any) -> Any:
        # Models often return a list of {translatedLabel, value} instead of a map.
        if isinstance(value, list):
            mapped: Dict[str, Any] = {}
            for index, item in enumerate(value):
                if not isinstance(item, dict):
                    continue
                label = str(item.get("translatedLabel") or item.get("label") or "")
                mapped[_property_id(label, index)] = item
            return mapped
        return value

    def merge_fields(self) -> Dict[str, Any]:
        data = self.model_dump(exclude_unset=True)
        if "vehicle_properties" in data:
            data["vehicle_properties"] = {
                key: prop.model_dump() for key, prop in self.vehicle_properties.items()
            }
        return data


class CarTranslationSchema(BaseModel):
    model_config = ConfigDict(extra="allow")

    make: str
    model: str
    year: Year


class AnalysisTranslationSchema(BaseModel):
    analysis: str


class VerifyCarSchema(BaseModel):
    modelConfidence: float = Field(ge=0.0, le=1.0)
    textConfidence: float = Field(ge=0.0, le=1.0)


class JudgeVerdictSchema(BaseModel):
    verdict: str
    vote: float = Field(ge=0, le=100)
