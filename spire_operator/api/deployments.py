"""Dry-run plan endpoints and aggregator listing."""
from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

from fastapi import APIRouter, Header, HTTPException, Request
from jsonschema import ValidationError, validate

from spire_operator import settings
from spire_operator.deploy.planner import plan_agent_resources, plan_server_resources
from spire_operator.deploy.reconciler import parse_agent_spec, parse_server_spec
from spire_operator.deploy.renderer import render_agent_config, render_server_config
from spire_operator.deploy.validator import validate_agent_spec, validate_server_spec
from spire_operator.exceptions import ValidationRejection
from spire_operator.schemas import (
    AGENT_KIND,
    SERVER_KIND,
    AggregatorInfo,
    PlannedResource,
    PlanRequest,
    PlanResponse,
    ServerReference,
)

router = APIRouter()

CONTRACTS_DIR = Path(__file__).resolve().parents[1] / "contracts"


def _require_auth(authorization: str | None):
    token = settings.api_token()
    if not token:
        return
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization token")
    if authorization.strip() != f"Bearer {token}":
        raise HTTPException(status_code=403, detail="Invalid authorization token")


@lru_cache(maxsize=None)
def _load_contract_schema_json(name: str) -> Dict[str, Any]:
    return json.loads((CONTRACTS_DIR / name).read_text())


def _validate_contract(instance: Dict[str, Any], schema_name: str) -> None:
    try:
        validate(instance=instance, schema=_load_contract_schema_json(schema_name))
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"{schema_name} validation error: {exc.message}")


def _rejected(exc: ValidationRejection) -> HTTPException:
    return HTTPException(status_code=400, detail={"reason": exc.reason, "field": exc.field})


@router.post("/servers/plan", response_model=PlanResponse)
async def plan_server(request: PlanRequest, authorization: str | None = Header(default=None)):
    """Validate, render and plan a SpireServer spec without touching the cluster."""
    _require_auth(authorization)
    _validate_contract(request.spec, "SpireServerSpec.schema.json")

    try:
        spec = parse_server_spec({"spec": request.spec})
        validate_server_spec(spec)
    except ValidationRejection as exc:
        raise _rejected(exc)

    config = render_server_config(spec, request.namespace)
    descriptors = plan_server_resources(spec, request.namespace, config)
    return PlanResponse(
        kind=SERVER_KIND,
        config=config,
        resources=[PlannedResource.from_descriptor(d) for d in descriptors],
    )


@router.post("/agents/plan", response_model=PlanResponse)
async def plan_agent(request: PlanRequest, authorization: str | None = Header(default=None)):
    """Validate, render and plan a SpireAgent spec.

    When ``server`` carries a SpireServer spec the agent is cross-checked
    against it.
    """
    _require_auth(authorization)
    _validate_contract(request.spec, "SpireAgentSpec.schema.json")

    try:
        spec = parse_agent_spec({"spec": request.spec})
        server = None
        if request.server is not None:
            server = ServerReference.from_server_spec(parse_server_spec({"spec": request.server}))
        validate_agent_spec(spec, server)
    except ValidationRejection as exc:
        raise _rejected(exc)

    config = render_agent_config(spec, request.namespace)
    descriptors = plan_agent_resources(spec, request.namespace, config)
    return PlanResponse(
        kind=AGENT_KIND,
        config=config,
        resources=[PlannedResource.from_descriptor(d) for d in descriptors],
    )


@router.get("/aggregators", response_model=List[AggregatorInfo])
async def list_aggregators(request: Request):
    """List SpireServer health aggregators known to this operator."""
    registry = getattr(request.app.state, "registry", None)
    if registry is None:
        return []
    return [
        AggregatorInfo(namespace=namespace, name=name, running=registry.is_running(namespace, name))
        for namespace, name in registry.keys()
    ]
