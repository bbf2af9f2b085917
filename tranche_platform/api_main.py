# api_main.py
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from .api_models import (
    CreateTranchesRequest,
    DeployPoolRequest,
    DepositRequest,
    ErrorResponse,
    FundInvestorRequest,
    LoanDetailRequest,
    StageResponse,
    SubscribeRequest,
    WorkflowStateResponse,
)
from .config import settings
from .engine import SecuritizationWorkflow
from .exceptions import (
    ConfigurationError,
    EventNotFoundError,
    LedgerCallError,
    PreconditionError,
    TranchePlatformError,
    ValidationError,
)
from .web3_integration.web3_client import get_ledger, load_identities

settings.configure_logging()
logger = logging.getLogger("Tranche.API")

_ERROR_RESPONSES = {
    409: {"model": ErrorResponse, "description": "Operation not allowed at the current stage"},
    422: {"model": ErrorResponse, "description": "Invalid operation input"},
    502: {"model": ErrorResponse, "description": "Ledger call failed"},
    503: {"model": ErrorResponse, "description": "Ledger not configured"},
}

app = FastAPI(title="Tranche Securitization API", version="1.0", responses=_ERROR_RESPONSES)

_workflow: Optional[SecuritizationWorkflow] = None


def get_workflow() -> SecuritizationWorkflow:
    """Return the process-wide workflow, building it on first use."""
    global _workflow
    if _workflow is None:
        operator, investor = load_identities(settings)
        _workflow = SecuritizationWorkflow(get_ledger(), operator, investor, settings)
    return _workflow


# --- ERROR MAPPING ---

_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (PreconditionError, 409),
    (ConfigurationError, 503),
    (LedgerCallError, 502),
    (EventNotFoundError, 502),
)


@app.exception_handler(TranchePlatformError)
async def workflow_error_handler(request: Request, exc: TranchePlatformError) -> JSONResponse:
    status = next((code for kind, code in _STATUS_BY_ERROR if isinstance(exc, kind)), 500)
    if status >= 500:
        logger.error(f"{request.url.path} failed: {exc}")
    return JSONResponse(status_code=status, content={"error": type(exc).__name__, "detail": str(exc)})


def _stage(workflow: SecuritizationWorkflow, result: dict) -> StageResponse:
    return StageResponse(stage=int(workflow.session.current_stage), result=result)


# --- ENDPOINTS ---

@app.get("/health", tags=["System"])
def health():
    return {"status": "ok"}


@app.get("/workflow", response_model=WorkflowStateResponse, tags=["Workflow"])
def workflow_state(workflow: SecuritizationWorkflow = Depends(get_workflow)):
    """Current session state, for rendering."""
    return WorkflowStateResponse(state=workflow.snapshot(), allowed_operations=list(workflow.allowed_operations()))


@app.post("/workflow/reset", response_model=StageResponse, tags=["Workflow"])
def reset_workflow(workflow: SecuritizationWorkflow = Depends(get_workflow)):
    """Start a new run."""
    workflow.reset()
    return _stage(workflow, {})


@app.post("/workflow/deploy-base-token", response_model=StageResponse, tags=["Operator"])
def deploy_base_token(workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.deploy_base_token())


@app.post("/workflow/fund-investor", response_model=StageResponse, tags=["Operator"])
def fund_investor(req: FundInvestorRequest, workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.fund_investor(req.amount, req.recipient))


@app.post("/workflow/deploy-loan-registry", response_model=StageResponse, tags=["Operator"])
def deploy_loan_registry(workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.deploy_loan_registry())


@app.post("/workflow/deploy-pool", response_model=StageResponse, tags=["Operator"])
def deploy_pool(req: Optional[DeployPoolRequest] = None, workflow: SecuritizationWorkflow = Depends(get_workflow)):
    req = req or DeployPoolRequest()
    return _stage(workflow, workflow.deploy_pool(req.loan_registry, req.stablecoin))


@app.post("/workflow/tokenize-loans", response_model=StageResponse, tags=["Operator"])
def tokenize_loans(workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.tokenize_loans())


@app.post("/workflow/fetch-loan-detail", response_model=StageResponse, tags=["Operator"])
def fetch_loan_detail(req: LoanDetailRequest, workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.fetch_loan_detail(req.index))


@app.post("/workflow/create-tranches", response_model=StageResponse, tags=["Operator"])
def create_tranches(req: CreateTranchesRequest, workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.create_tranches(req.senior_bps, req.mezzanine_bps, req.junior_bps))


@app.post("/workflow/subscribe-tranche", response_model=StageResponse, tags=["Investor"])
def subscribe_tranche(req: SubscribeRequest, workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.subscribe_tranche(req.tranche, req.amount))


@app.post("/workflow/query-holdings", response_model=StageResponse, tags=["Investor"])
def query_holdings(workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.query_holdings())


@app.post("/workflow/query-balance", response_model=StageResponse, tags=["Investor"])
def query_balance(workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.query_balance())


@app.post("/workflow/deposit-payment", response_model=StageResponse, tags=["Servicer"])
def deposit_payment(req: DepositRequest, workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.deposit_payment(req.amount))


@app.post("/workflow/distribute-payment", response_model=StageResponse, tags=["Servicer"])
def distribute_payment(workflow: SecuritizationWorkflow = Depends(get_workflow)):
    return _stage(workflow, workflow.distribute_payment())
