"""Pydantic schemas for request/response validation."""
from datetime import datetime
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class RewardBandSchema(BaseModel):
    """One reward band; ``max`` of null means no upper bound."""
    min: int = Field(..., ge=0)
    max: Optional[int] = Field(None, ge=0)
    reward: int = Field(..., ge=0)

    @model_validator(mode="after")
    def check_range(self):
        if self.max is not None and self.max < self.min:
            raise ValueError("max must be >= min")
        return self


class SessionSettingsResponse(BaseModel):
    attempts_per_session: int
    cooldown_minutes: int
    reward_bands: List[RewardBandSchema]


class SettingsUpdateRequest(BaseModel):
    """Partial settings update; omitted fields keep their stored value."""
    attempts_per_session: Optional[int] = Field(None, gt=0)
    cooldown_minutes: Optional[int] = Field(None, gt=0)
    reward_bands: Optional[List[RewardBandSchema]] = Field(None, min_length=1)


class SubmitAttemptRequest(BaseModel):
    """Either a precomputed offset or the moment of the click."""
    offset_ms: Optional[int] = Field(None, ge=0)
    clicked_at: Optional[datetime] = None

    @model_validator(mode="after")
    def exactly_one_source(self):
        if (self.offset_ms is None) == (self.clicked_at is None):
            raise ValueError("provide exactly one of offset_ms or clicked_at")
        return self


class SessionStateResponse(BaseModel):
    player_id: str
    attempts_remaining: int
    attempts_per_session: int
    attempts_made: int
    last_attempt_at: Optional[datetime] = None
    best_offset_ms: Optional[int] = None
    best_reward: int
    sessions_started: int
    phase: Literal["active", "exhausted_cooling", "exhausted_ready"]
    cooldown_remaining_seconds: Optional[float] = None
    cooldown_message: Optional[str] = None


class AttemptResponse(BaseModel):
    """An attempt as listed in the current-session view.

    ``reward`` was locked in when the attempt was accepted;
    ``current_reward`` re-scores the offset with today's bands.
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    player_id: str
    offset_ms: int
    reward: int
    current_reward: int
    created_at: datetime


class AcceptedResponse(BaseModel):
    status: Literal["accepted"] = "accepted"
    attempt: AttemptResponse
    session: SessionStateResponse
    session_reset: bool
    message: Optional[str] = None


class RejectedResponse(BaseModel):
    status: Literal["rejected"] = "rejected"
    reason: Literal["cooldown_active", "no_attempts_left"]
    session: SessionStateResponse
    retry_after_seconds: Optional[float] = None
    message: str


SubmitAttemptResponse = Union[AcceptedResponse, RejectedResponse]


class CooldownResponse(BaseModel):
    player_id: str
    active: bool
    remaining_seconds: Optional[float] = None
    message: str


class ClockResponse(BaseModel):
    server_time: datetime
    display: str
    millis: int
    offset_ms: int


class ResetAllResponse(BaseModel):
    players_reset: int


class PlayerOverview(BaseModel):
    """Admin listing row."""
    player_id: str
    attempts_remaining: int
    best_offset_ms: Optional[int] = None
    best_reward: int
    sessions_started: int
    total_attempts: int
    last_attempt_at: Optional[datetime] = None
    created_at: datetime
