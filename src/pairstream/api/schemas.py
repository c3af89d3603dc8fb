from pydantic import BaseModel, Field
from typing import Any, Dict, Literal, Optional

from pairstream.pnl.models import PnLUpdate


# =========================
# Server -> client frames
# =========================

class SubscribedFrame(BaseModel):
    type: Literal["subscribed"] = "subscribed"
    message: str = "Subscribed to position updates"


class ErrorFrame(BaseModel):
    type: Literal["error"] = "error"
    message: str


class PositionUpdateData(BaseModel):
    id: str
    unrealizedPnl: float
    unrealizedPnlPercent: float
    currentRatio: float
    currentLongPrice: float
    currentShortPrice: float


class PositionUpdateFrame(BaseModel):
    type: Literal["position_update"] = "position_update"
    data: PositionUpdateData

    @classmethod
    def from_update(cls, update: PnLUpdate) -> "PositionUpdateFrame":
        return cls(data=PositionUpdateData(**update.to_dict()))


class PongFrame(BaseModel):
    type: Literal["pong"] = "pong"


def frame(model: BaseModel) -> Dict[str, Any]:
    """Serialize a frame model for send_json."""
    return model.model_dump()


# =========================
# HTTP responses
# =========================

class HealthResponse(BaseModel):
    status: str = "healthy"
    server_id: str
    version: str
    connections: int = Field(..., ge=0)
    uptime_seconds: float
    feed: str
    feed_reconnect_attempts: int = 0
    cache: Dict[str, Any]
    last_broadcast: Optional[Dict[str, Any]] = None
