"""Schemas for the usage status endpoint."""
from typing import Dict
from pydantic import BaseModel


class ModelUsage(BaseModel):
    """Daily usage of one model class. -1 means unlimited."""
    used: int
    limit: int
    remaining: int


class PoolUsage(BaseModel):
    """Remaining shared credential capacity for one model class."""
    total: int
    remaining: int


class StatusResponse(BaseModel):
    plan: str
    plan_label: str
    plan_badge: str
    usage: Dict[str, ModelUsage]
    pools: Dict[str, PoolUsage]
