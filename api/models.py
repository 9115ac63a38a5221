"""
API response models for AuditBoard REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: core/ models = domain truth; api/ models = API contract.
"""

from dataclasses import asdict
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.identity import Account
from core.models import DashboardView

# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class AccountModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    home_account_id: str
    username: str
    name: str = ""

    @classmethod
    def from_account(cls, account: Account) -> "AccountModel":
        return cls(home_account_id=account.home_account_id, username=account.username, name=account.name)


class SessionDiagnostics(BaseModel):
    """What the waiting view shows while no account is active."""

    model_config = ConfigDict(frozen=True)

    origin: str
    redirect_uri: str
    secure_context: bool
    cached_accounts: int
    login_attempted: bool
    interaction_status: str
    message: str = ""
    error: str = ""


class SessionResponse(BaseModel):
    """Response for GET /api/v1/session and the POST session controls.

    redirect_url is set when the call started an interactive sign-in; the
    client should navigate there.
    """

    model_config = ConfigDict(frozen=True)

    authenticated: bool
    account: Optional[AccountModel] = None
    decision: Optional[str] = None
    redirect_url: Optional[str] = None
    diagnostics: SessionDiagnostics


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class GroupCountModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    count: int


class GroupAverageModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    average: Optional[float]
    count: int


class StackedGroupModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    label: str
    total: int
    segments: list[GroupCountModel]


class TrendPointModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    day: str
    count: int


class StatsModel(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    open: int
    closed: int
    avg_score: Optional[float]


class DashboardResponse(BaseModel):
    """Response for GET /api/v1/dashboard."""

    model_config = ConfigDict(frozen=True)

    site_id: str
    token_scopes: str
    stats: StatsModel
    rows: list[dict[str, Any]]
    areas: list[str]
    statuses: list[str]
    by_area: list[GroupCountModel]
    by_status: list[GroupCountModel]
    by_five_s: list[GroupCountModel]
    avg_score_by_area: list[GroupAverageModel]
    area_status: list[StackedGroupModel]
    audit_trend: list[TrendPointModel]
    follow_up_due: list[TrendPointModel]
    follow_up_stages: list[GroupCountModel]

    @classmethod
    def from_view(cls, view: DashboardView, site_id: str = "", token_scopes: str = "") -> "DashboardResponse":
        """Factory: map the core view model onto the API contract."""

        def counts(groups) -> list[GroupCountModel]:
            return [GroupCountModel(label=g.label, count=g.count) for g in groups]

        def trend(points) -> list[TrendPointModel]:
            return [TrendPointModel(day=p.day.isoformat(), count=p.count) for p in points]

        return cls(
            site_id=site_id,
            token_scopes=token_scopes,
            stats=StatsModel(**asdict(view.stats)),
            rows=[row.as_dict() for row in view.rows],
            areas=view.areas,
            statuses=view.statuses,
            by_area=counts(view.by_area),
            by_status=counts(view.by_status),
            by_five_s=counts(view.by_five_s),
            avg_score_by_area=[
                GroupAverageModel(label=g.label, average=g.average, count=g.count) for g in view.avg_score_by_area
            ],
            area_status=[
                StackedGroupModel(label=g.label, total=g.total, segments=counts(g.segments)) for g in view.area_status
            ],
            audit_trend=trend(view.audit_trend),
            follow_up_due=trend(view.follow_up_due),
            follow_up_stages=counts(view.follow_up_stages),
        )
