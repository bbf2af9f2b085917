"""
API Request/Response Models
===========================

Pydantic models for the workflow endpoints. Request models only enforce
types; range checks (subscription band, loan index, positive amounts) are
done by the workflow so that every caller, HTTP or not, gets the same
``ValidationError``.

See Also
--------
api_main : Main API module using these models.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class FundInvestorRequest(BaseModel):
    amount: int = Field(description="Whole stablecoin units to mint", examples=[1000])
    recipient: Optional[str] = Field(
        default=None,
        description="Recipient address; defaults to the configured investor",
    )


class DeployPoolRequest(BaseModel):
    loan_registry: Optional[str] = Field(default=None, description="LoanNFT address; defaults to the session's")
    stablecoin: Optional[str] = Field(default=None, description="Stablecoin address; defaults to the session's")


class LoanDetailRequest(BaseModel):
    index: int = Field(description="Zero-based loan index", examples=[0])


class CreateTranchesRequest(BaseModel):
    senior_bps: int = Field(examples=[500])
    mezzanine_bps: int = Field(examples=[300])
    junior_bps: int = Field(examples=[100])


class SubscribeRequest(BaseModel):
    tranche: str = Field(description="Senior, Mezzanine or Junior", examples=["Senior"])
    amount: int = Field(description="Requested subscription amount", examples=[250_000])


class DepositRequest(BaseModel):
    amount: int = Field(description="Payment amount deposited into each tranche", examples=[1000])


class StageResponse(BaseModel):
    stage: int = Field(description="Workflow stage after the operation")
    result: Dict[str, Any] = Field(default_factory=dict)


class WorkflowStateResponse(BaseModel):
    state: Dict[str, Any]
    allowed_operations: List[str]


class ErrorResponse(BaseModel):
    error: str
    detail: str
