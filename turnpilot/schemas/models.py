from __future__ import annotations

from pydantic import BaseModel, Field


class ModelRequirements(BaseModel):
    vision: bool = False
    audio_in: bool = False
    audio_out: bool = False
    tools: bool = False
    search: bool = False
    reasoning: bool = False
    code_exec: bool = False
    # Link-aware reordering hint; never a strict capability.
    scrape: bool = False

    @property
    def strict(self) -> bool:
        return any(
            (self.vision, self.audio_in, self.audio_out, self.tools, self.search, self.reasoning, self.code_exec)
        )

    def required(self) -> list[str]:
        names = ("vision", "audio_in", "audio_out", "tools", "search", "reasoning", "code_exec")
        return [name for name in names if getattr(self, name)]


class ResolutionDecision(BaseModel):
    model: str
    accepted: bool
    reason: str
    health_score: float | None = None


class ModelResolutionDetails(BaseModel):
    model: str
    route: str
    requirements: ModelRequirements = Field(default_factory=ModelRequirements)
    allowlist_applied: bool = False
    candidates: list[str] = Field(default_factory=list)
    decisions: list[ResolutionDecision] = Field(default_factory=list)
    fallback: bool = False
