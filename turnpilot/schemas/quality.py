from __future__ import annotations

from pydantic import BaseModel, Field

from ..orchestration.enums import CriticVerdict, ProviderName


class CriticAssessment(BaseModel):
    score: float = Field(0.5, ge=0.0, le=1.0)
    verdict: CriticVerdict = CriticVerdict.PASS
    issues: list[str] = Field(default_factory=list)
    rewrite_prompt: str = ""
    model: str = ""
    tags: list[str] = Field(default_factory=list)


class CriticIteration(BaseModel):
    iteration: int
    score: float
    verdict: CriticVerdict
    issues: list[str] = Field(default_factory=list)
    model: str = ""
    redispatched: list[ProviderName] = Field(default_factory=list)
    revised: bool = False
    revision_model: str | None = None


class CriticLoopResult(BaseModel):
    final_text: str
    iterations: list[CriticIteration] = Field(default_factory=list)
    skipped_reason: str | None = None
    aborted_reason: str | None = None

    @property
    def revised(self) -> bool:
        return any(item.revised for item in self.iterations)
