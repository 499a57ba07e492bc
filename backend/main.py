# backend/main.py
"""
Crew Legality Engine - FastAPI main file.

Loads rule limits from backend/rules and the seed roster from backend/data,
exposes:
- GET  /               -> "Crew Legality Engine Ready!" + rules / crew counts
- GET  /rules          -> active limits, ranking weights and provenance
- GET  /rules/{id}     -> full rule detail
- POST /rules/reload   -> reload rules from disk
- POST /check          -> legality checker endpoint
- POST /replacements   -> ranked replacement search
- POST /swap           -> crew swap transaction
- GET  /crew, /crew/{id}, /reserve-pool -> status views
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .crew_status import router as crew_status_router
from .duty_store import load_roster
from .errors import CUSTOM_ERRORS, status_code_for
from .legality import router as legality_router
from .load_rules import RULES_DIR, load_ruleset
from .models import ErrorResponse
from .replacement import router as replacement_router
from .swap import router as swap_router

log = logging.getLogger("uvicorn.error")


# ---------- RESPONSE MODELS ----------
class RuleSummary(BaseModel):
    id: str
    title: Optional[str] = None
    reference: Optional[Any] = None
    enabled: Optional[bool] = None
    version: Optional[str] = None
    type: Optional[str] = None


class RuleDetail(RuleSummary):
    logic: Dict[str, Any]
    notes: Optional[Any] = None


class RulesOverview(BaseModel):
    rules: List[RuleSummary]
    limits: Dict[str, Any]
    ranking: Dict[str, Any]
    costing: Dict[str, Any]
    meta: Dict[str, Any]
    invalid: List[Dict[str, Any]]


# ---------- LIFESPAN STARTUP ----------
@asynccontextmanager
async def _lifespan(app: FastAPI):
    app.state.ruleset = load_ruleset(RULES_DIR)
    app.state.store = load_roster()
    log.info("Crew legality engine startup: %d rules (%d invalid), %d crew records",
             len(app.state.ruleset.rules), len(app.state.ruleset.invalid), len(app.state.store))
    yield


app = FastAPI(title="Crew Legality Engine", lifespan=_lifespan)


# ---------- ERROR ENVELOPE ----------
def _error_response(status_code: int, message: str, details: Optional[Any] = None) -> JSONResponse:
    body = ErrorResponse(message=message, details=details)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


async def _custom_error_handler(request: Request, exc: Exception):
    code = status_code_for(exc)
    if code >= 500:
        log.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc)
    return _error_response(code, str(exc))


for _exc_type in CUSTOM_ERRORS:
    app.add_exception_handler(_exc_type, _custom_error_handler)


def jsonable_errors(errors: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    # ctx may carry the raw exception object
    return [{"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")} for e in errors]


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"Invalid input at {where}: {first.get('msg')}" if where else "Invalid input"
    return _error_response(422, message, details={"errors": jsonable_errors(errors)})


@app.exception_handler(Exception)
async def _unhandled_error_handler(request: Request, exc: Exception):
    log.exception("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path, exc_info=exc)
    return _error_response(500, f"Internal error: {type(exc).__name__}")


# Include routers
app.include_router(legality_router)
app.include_router(replacement_router)
app.include_router(swap_router)
app.include_router(crew_status_router)


# ---------- ROOT ----------
@app.get("/")
def root(request: Request):
    ruleset = request.app.state.ruleset
    return {
        "message": "Crew Legality Engine Ready!",
        "rules_loaded": len(ruleset.rules),
        "crew_loaded": len(request.app.state.store),
        "ruleset_version": ruleset.meta.get("ruleset_version"),
    }


def _summary(rule) -> RuleSummary:
    return RuleSummary(
        id=rule.id,
        title=rule.title,
        reference=rule.reference,
        enabled=rule.enabled,
        version=rule.version,
        type=rule.logic.get("type"),
    )


# ---------- LIST RULES ----------
@app.get("/rules", response_model=RulesOverview)
def get_rules(request: Request):
    ruleset = request.app.state.ruleset
    return RulesOverview(
        rules=[_summary(r) for _, r in sorted(ruleset.rules.items())],
        limits=ruleset.limits.model_dump(),
        ranking=ruleset.ranking.model_dump(),
        costing=ruleset.costing.model_dump(),
        meta=ruleset.meta,
        invalid=ruleset.invalid,
    )


# ---------- GET RULE DETAIL ----------
@app.get("/rules/{rule_id}", response_model=RuleDetail)
def get_rule_detail(rule_id: str, request: Request):
    rule = request.app.state.ruleset.rules.get(rule_id)
    if rule is None:
        return _error_response(404, f"Rule '{rule_id}' not found")
    return RuleDetail(**_summary(rule).model_dump(), logic=rule.logic, notes=rule.notes)


# ---------- RELOAD RULES ----------
@app.post("/rules/reload")
def reload_rules(request: Request):
    ruleset = load_ruleset(RULES_DIR)
    request.app.state.ruleset = ruleset
    log.info("Rules reloaded: %d valid, %d invalid", len(ruleset.rules), len(ruleset.invalid))
    return {
        "loaded": len(ruleset.rules),
        "invalid": ruleset.invalid,
        "meta": ruleset.meta,
    }
