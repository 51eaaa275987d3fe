"""Workflow orchestration for the OOH booking system."""

from .campaign_workflow import CampaignWorkflow

__all__ = ["CampaignWorkflow"]
