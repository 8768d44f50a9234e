from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from datetime import datetime
from typing import Dict, List, Optional
import logging

from pydantic import BaseModel, Field

from tender_evaluation.errors import EvaluationError
from tender_evaluation.main import TenderEvaluationEngine
from tender_evaluation.schemas import (
    ChairmanDecision,
    CommitteeAssignment,
    CommitteeTemplate,
    EvaluationTemplate,
    FinalScore,
    ScoreItem,
    ScoreSubmission,
    TemplateDefinition,
)
from tender_evaluation.validation import legacy_score_items

logger = logging.getLogger(__name__)

app = FastAPI(title="Tender Evaluation Engine")
app.add_middleware(CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_methods=["*"], allow_headers=["*"])

engine = TenderEvaluationEngine()

STATUS_BY_CATEGORY = {
    "validation": 400,
    "not-found": 404,
    "state-conflict": 409,
    "out-of-bounds": 422,
}


@app.exception_handler(EvaluationError)
async def evaluation_error_handler(request: Request, exc: EvaluationError):
    status = STATUS_BY_CATEGORY.get(exc.category, 500)
    logger.info("%s %s → %d %s", request.method, request.url.path, status, exc.code)
    return JSONResponse(status_code=status, content=exc.to_dict())


# ── Request bodies ────────────────────────────────────────────────────────

class AssignmentRequest(BaseModel):
    tender_id: str
    evaluation_template_id: str
    committee_template_id: str
    evaluation_start: datetime
    evaluation_end: datetime
    notes: str = ""
    created_by: str = ""
    status: str = "draft"


class StatusRequest(BaseModel):
    status: str


class ScoreRequest(BaseModel):
    tender_id: str
    evaluator_id: str
    bidder_name: str
    # legacy {criterionId: score} map, or explicit items
    scores: Dict[str, float] = Field(default_factory=dict)
    items: List[ScoreItem] = Field(default_factory=list)
    draft: bool = False


class BatchScoreRequest(BaseModel):
    tender_id: str
    evaluator_id: str
    items: List[ScoreItem] = Field(default_factory=list)
    draft: bool = False


class ApproveRequest(BaseModel):
    approver_id: str
    winning_bidder_name: Optional[str] = None
    notes: Optional[str] = None


class RevisionRequest(BaseModel):
    approver_id: str
    reason: str = ""


# ── Templates ─────────────────────────────────────────────────────────────

@app.get("/evaluation-templates", response_model=List[EvaluationTemplate])
def list_evaluation_templates():
    return engine.list_templates()

@app.get("/evaluation-templates/{template_id}", response_model=EvaluationTemplate)
def get_evaluation_template(template_id: str):
    return engine.get_template(template_id)

@app.post("/evaluation-templates", response_model=EvaluationTemplate, status_code=201)
def create_evaluation_template(definition: TemplateDefinition):
    return engine.create_template(definition)

@app.get("/committee-templates", response_model=List[CommitteeTemplate])
def list_committee_templates():
    return engine.list_committee_templates()


# ── Assignments ───────────────────────────────────────────────────────────

@app.post("/committee-assignments", response_model=CommitteeAssignment, status_code=201)
def create_committee_assignment(body: AssignmentRequest):
    return engine.create_assignment(
        body.tender_id, body.evaluation_template_id, body.committee_template_id,
        {"start": body.evaluation_start, "end": body.evaluation_end},
        notes=body.notes, created_by=body.created_by, status=body.status,
    )

@app.get("/committee-assignments", response_model=List[CommitteeAssignment])
def list_committee_assignments(status: Optional[str] = None):
    return engine.list_assignments(status)

@app.patch("/committee-assignments/{assignment_id}/status", response_model=CommitteeAssignment)
def update_committee_assignment_status(assignment_id: str, body: StatusRequest):
    return engine.set_assignment_status(assignment_id, body.status)

@app.get("/tender-assignments/{tender_id}", response_model=CommitteeAssignment)
def get_tender_assignment(tender_id: str):
    return engine.get_assignment(tender_id)

@app.get("/evaluators/{evaluator_id}/assignments", response_model=List[CommitteeAssignment])
def get_evaluator_assignments(evaluator_id: str):
    return engine.list_evaluator_assignments(evaluator_id)


# ── Scores ────────────────────────────────────────────────────────────────

@app.post("/tender-scores", response_model=ScoreSubmission, status_code=201)
def submit_tender_score(body: ScoreRequest):
    items = body.items or legacy_score_items(body.scores)
    return engine.submit_score(
        body.tender_id, body.evaluator_id, body.bidder_name, items, draft=body.draft
    )

@app.post("/tender-scores/batch", response_model=ScoreSubmission, status_code=201)
def submit_batch_tender_scores(body: BatchScoreRequest):
    return engine.submit_batch_scores(
        body.tender_id, body.evaluator_id, body.items, draft=body.draft
    )

@app.get("/tender-scores/{tender_id}", response_model=List[ScoreSubmission])
def get_tender_scores(tender_id: str):
    return engine.get_scores(tender_id)

@app.get("/tender-scores/{tender_id}/final", response_model=List[FinalScore])
def get_tender_final_scores(tender_id: str):
    return engine.get_final_scores(tender_id)


# ── Chairman decisions ────────────────────────────────────────────────────

@app.post("/tenders/{tender_id}/decision/approve", response_model=ChairmanDecision, status_code=201)
def approve_tender(tender_id: str, body: ApproveRequest):
    return engine.approve(tender_id, body.approver_id, body.winning_bidder_name, body.notes)

@app.post("/tenders/{tender_id}/decision/revision", response_model=ChairmanDecision, status_code=201)
def request_tender_revision(tender_id: str, body: RevisionRequest):
    return engine.request_revision(tender_id, body.approver_id, body.reason)

@app.get("/tenders/{tender_id}/decision", response_model=ChairmanDecision)
def get_tender_decision(tender_id: str):
    return engine.get_decision(tender_id)

@app.get("/tenders/{tender_id}/decision/history", response_model=List[ChairmanDecision])
def get_tender_decision_history(tender_id: str):
    return engine.get_decision_history(tender_id)
