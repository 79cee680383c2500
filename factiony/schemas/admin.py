"""Schemas for health and admin endpoints."""

from datetime import datetime

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    relational: bool
    document: bool
    overall: bool


class RelationalStatsOut(BaseModel):
    total_users: int = Field(alias="totalUsers", ge=0)
    premium_users: int = Field(alias="premiumUsers", ge=0)
    total_follows: int = Field(alias="totalFollows", ge=0)
    total_subscriptions: int = Field(alias="totalSubscriptions", ge=0)

    model_config = {"populate_by_name": True, "from_attributes": True}


class DocumentStatsOut(BaseModel):
    total_likes: int = Field(alias="totalLikes", ge=0)
    total_comments: int = Field(alias="totalComments", ge=0)
    total_lists: int = Field(alias="totalLists", ge=0)
    cache_size: int = Field(alias="cacheSize", ge=0)
    total_logs: int = Field(alias="totalLogs", ge=0)

    model_config = {"populate_by_name": True, "from_attributes": True}


class StatsResponse(BaseModel):
    """Platform-wide counters. A store that failed to answer reports zeros."""

    relational: RelationalStatsOut
    document: DocumentStatsOut
    timestamp: datetime


class MaintenanceRequest(BaseModel):
    """Request body for a maintenance run."""

    threshold_days: int | None = Field(alias="thresholdDays", default=None, ge=0)

    model_config = {"populate_by_name": True}


class MaintenanceResponse(BaseModel):
    cleared_cache: int = Field(alias="clearedCache", ge=0)
    archived_logs: int = Field(alias="archivedLogs", ge=0)
    skipped: bool

    model_config = {"populate_by_name": True}
