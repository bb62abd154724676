"""Runtime settings and the client-facing game configuration model."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from .board import MAX_SIZE, MIN_SIZE

OpponentMode = Literal["self", "computer", "human"]


@dataclass(frozen=True)
class Settings:
    """Service settings, read from ``GRIDXO_*`` environment variables."""

    host: str = "0.0.0.0"
    port: int = 8000
    match_timeout: float = 30.0
    computer_move_delay: float = 0.5
    disconnect_grace: float = 3.0
    log_level: str = "info"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            host=env.get("GRIDXO_HOST", cls.host),
            port=int(env.get("GRIDXO_PORT", str(cls.port))),
            match_timeout=float(
                env.get("GRIDXO_MATCH_TIMEOUT", str(cls.match_timeout))
            ),
            computer_move_delay=float(
                env.get("GRIDXO_COMPUTER_DELAY", str(cls.computer_move_delay))
            ),
            disconnect_grace=float(
                env.get("GRIDXO_DISCONNECT_GRACE", str(cls.disconnect_grace))
            ),
            log_level=env.get("GRIDXO_LOG_LEVEL", cls.log_level).lower(),
        )


class GameConfig(BaseModel):
    """Settings chosen by the player before a game starts."""

    model_config = ConfigDict(populate_by_name=True)

    grid_size: int = Field(default=3, alias="gridSize", ge=MIN_SIZE, le=MAX_SIZE)
    opponent_mode: OpponentMode = Field(default="self", alias="opponentMode")
