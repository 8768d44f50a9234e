"""
test_api.py — HTTP surface tests.

Exercises the FastAPI routes through TestClient: request parsing, the
error-category → status-code mapping, and the evaluation flow as the
portal drives it (assign, score, rank, approve).

Run with:
    python -m pytest tests/test_api.py -v
"""

from __future__ import annotations

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from fastapi.testclient import TestClient

import api.main as api_main
from tender_evaluation.main import TenderEvaluationEngine

WINDOW = {
    "evaluation_start": "2024-01-15T00:00:00Z",
    "evaluation_end": "2024-02-15T23:59:59Z",
}


def _client() -> TestClient:
    # fresh engine per test so state doesn't leak between tests
    api_main.engine = TenderEvaluationEngine()
    return TestClient(api_main.app)


def _assign(client, tender_id="TDR-001", template_id="ET-002"):
    resp = client.post("/committee-assignments", json={
        "tender_id": tender_id,
        "evaluation_template_id": template_id,
        "committee_template_id": "CT-002",
        "status": "active",
        **WINDOW,
    })
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_templates_listed():
    client = _client()
    resp = client.get("/evaluation-templates")
    assert resp.status_code == 200
    assert len(resp.json()) == 8

    resp = client.get("/evaluation-templates/ET-003")
    assert resp.json()["methodology"] == "QBS"

    resp = client.get("/evaluation-templates/ET-999")
    assert resp.status_code == 404
    assert resp.json()["code"] == "template-not-found"

    assert len(client.get("/committee-templates").json()) == 5
    print("  ✓ test_templates_listed")


def test_create_template():
    client = _client()
    resp = client.post("/evaluation-templates", json={
        "name": "Bridge works LCS",
        "methodology": "lcs",
        "criteria": [
            {"id": 1, "name": "Technical", "kind": "technical", "max_score": 70},
            {"id": 2, "name": "Price", "kind": "financial", "max_score": 30},
        ],
    })
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["methodology"] == "LCS"
    assert [c["id"] for c in body["criteria"]] == ["1", "2"]
    print("  ✓ test_create_template")


def test_assignment_conflicts_and_status():
    client = _client()
    assignment = _assign(client)

    resp = client.post("/committee-assignments", json={
        "tender_id": "TDR-001",
        "evaluation_template_id": "ET-002",
        "committee_template_id": "CT-002",
        **WINDOW,
    })
    assert resp.status_code == 409
    assert resp.json()["code"] == "duplicate-active-assignment"

    resp = client.patch(f"/committee-assignments/{assignment['id']}/status",
                        json={"status": "bogus"})
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid-status"

    resp = client.patch(f"/committee-assignments/{assignment['id']}/status",
                        json={"status": "suspended"})
    assert resp.json()["status"] == "suspended"
    assert client.get("/evaluators/ev-1/assignments").json() == []
    print("  ✓ test_assignment_conflicts_and_status")


def test_score_rank_and_approve_lcs():
    """
    LCS template ET-002: technical max 70, financial max 30.
    Acme 56/70 = 80 % technical, 27/30 = 90 % financial → 0.8×90 + 0.2×80 = 88.
    Beta 49/70 = 70 % technical (below 75) → 0.5×70 = 35.
    """
    client = _client()
    _assign(client)

    resp = client.post("/tender-scores", json={
        "tender_id": "TDR-001", "evaluator_id": "ev-1",
        "bidder_name": "Acme", "scores": {"1": 56, "2": 27},
    })
    assert resp.status_code == 201, resp.text
    assert resp.json()["total_score"] == 83

    resp = client.post("/tender-scores/batch", json={
        "tender_id": "TDR-001", "evaluator_id": "ev-2",
        "items": [
            {"bidder_name": "Beta", "criterion_id": "1", "score": 49},
            {"bidder_name": "Beta", "criterion_id": "2", "score": 30},
        ],
    })
    assert resp.status_code == 201, resp.text

    resp = client.post("/tender-scores", json={
        "tender_id": "TDR-001", "evaluator_id": "ev-1",
        "bidder_name": "Acme", "scores": {"1": 71, "2": 27},
    })
    assert resp.status_code == 422
    assert resp.json()["code"] == "score-out-of-range"

    assert len(client.get("/tender-scores/TDR-001").json()) == 2

    final = client.get("/tender-scores/TDR-001/final").json()
    assert [(f["bidder_name"], f["final_score"], f["rank"]) for f in final] == [
        ("Acme", 88.0, 1), ("Beta", 35.0, 2),
    ]

    resp = client.post("/tenders/TDR-001/decision/revision",
                       json={"approver_id": "chair", "reason": "no"})
    assert resp.status_code == 400
    assert client.get("/tenders/TDR-001/decision").status_code == 404

    resp = client.post("/tenders/TDR-001/decision/approve", json={"approver_id": "chair"})
    assert resp.status_code == 201, resp.text
    decision = resp.json()
    assert decision["status"] == "approved"
    assert decision["winning_bidder_name"] == "Acme"

    assert client.get("/tender-assignments/TDR-001").json()["status"] == "completed"
    assert len(client.get("/tenders/TDR-001/decision/history").json()) == 1
    print("  ✓ test_score_rank_and_approve_lcs")


def test_final_scores_empty_before_scoring():
    client = _client()
    assert client.get("/tender-scores/NOTHING/final").json() == []
    resp = client.post("/tenders/NOTHING/decision/approve", json={"approver_id": "chair"})
    assert resp.status_code == 404
    assert resp.json()["code"] == "assignment-not-found"
    print("  ✓ test_final_scores_empty_before_scoring")


if __name__ == "__main__":
    for test_fn in (
        test_templates_listed,
        test_create_template,
        test_assignment_conflicts_and_status,
        test_score_rank_and_approve_lcs,
        test_final_scores_empty_before_scoring,
    ):
        test_fn()
