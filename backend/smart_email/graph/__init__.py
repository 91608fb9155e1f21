"""Workflow graph package."""
from .review_loop import create_review_workflow, route_after_review, run_review_loop

__all__ = ["create_review_workflow", "route_after_review", "run_review_loop"]
