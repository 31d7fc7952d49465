from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class EnvelopeSeed(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)
    category: str = Field(default="uncategorized", max_length=100)
    allocation: float = Field(default=0.0, ge=0, allow_inf_nan=False)
    is_individual: bool = False
    rollover: bool = False


class EnvelopeSeedFile(BaseModel):
    envelopes: list[EnvelopeSeed] = Field(default_factory=list)


class EnvelopeUpdateIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    category: Optional[str] = Field(default=None, min_length=1, max_length=100)
    allocation: Optional[float] = None
    rollover: Optional[bool] = None

    def is_empty(self) -> bool:
        return self.category is None and self.allocation is None and self.rollover is None
