"""SPIRE deployment pipeline: validate, render, plan, apply, observe."""
from spire_operator.deploy.applier import apply_resources
from spire_operator.deploy.health import AggregatorRegistry, HealthAggregator, aggregate_health
from spire_operator.deploy.planner import plan_agent_resources, plan_server_resources
from spire_operator.deploy.reconciler import Reconciler
from spire_operator.deploy.renderer import render_agent_config, render_server_config
from spire_operator.deploy.validator import validate_agent_spec, validate_server_spec

__all__ = [
    "validate_server_spec",
    "validate_agent_spec",
    "render_server_config",
    "render_agent_config",
    "plan_server_resources",
    "plan_agent_resources",
    "apply_resources",
    "aggregate_health",
    "HealthAggregator",
    "AggregatorRegistry",
    "Reconciler",
]
