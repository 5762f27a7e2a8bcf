from typing import Literal, Optional

from pydantic import BaseModel


class ActionResponse(BaseModel):
    # ignored: stale or unknown target, nothing changed
    status: Literal["ok", "ignored"]
    count: Optional[int] = None
