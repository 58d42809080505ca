from pydantic import BaseModel, Field


class BridgeResult(BaseModel):
    """Outcome of one bridge cycle."""

    scanned: int = 0
    bridged: int = Field(default=0, description="Jobs created this cycle")
    already_bridged: int = Field(
        default=0, description="Events another bridge had already turned into jobs"
    )
    conflicts: int = Field(
        default=0,
        description="Events left pending: their idempotency key is held by a job "
        "from another source",
    )
