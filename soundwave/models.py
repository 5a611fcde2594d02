from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class GenerateOptions(BaseModel):
    """Parameters for the FM tone generator, with the CLI defaults."""

    model_config = ConfigDict(allow_inf_nan=False)

    duration_seconds: int = Field(3, ge=0)
    sample_rate: int = Field(44_100, gt=0, le=0xFFFFFFFF)
    fm: float = Field(2.0, description="Modulating frequency in Hz")
    fc: float = Field(1500.0, description="Carrier frequency in Hz")
    modulation_index: float = Field(100.0)
    amplitude: float = Field(30000.0)
