from __future__ import annotations

import math

from pydantic import BaseModel, ConfigDict, Field


class Bucket(BaseModel):
    """Quota state of one limiter id within the current window.

    Attributes:
        limit: Maximum number of tokens per window.
        remaining: Tokens left in the window; -1 once exhausted.
        reset: Epoch milliseconds at which the window ends.
    """

    model_config = ConfigDict(frozen=True, strict=True)

    limit: int = Field(..., ge=1)
    remaining: int = Field(..., ge=-1)
    reset: int = Field(..., ge=0)

    @property
    def is_exhausted(self) -> bool:
        return self.remaining < 0

    def retry_after_ms(self, now_ms: int) -> int:
        """Milliseconds until the window resets (0 when already past)."""
        return max(0, self.reset - now_ms)

    def retry_after_seconds(self, now_ms: int) -> int:
        return int(math.ceil(self.retry_after_ms(now_ms) / 1000))
