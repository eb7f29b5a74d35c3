"""
Service Procurement - workflow kernel for IT service requests

Drives a service request from PM draft through RP review, provider bidding
and RP evaluation to the procurement officer's order. Every transition is a
single compare-and-set on the request status, so concurrent callers can never
move a request twice.

Fun fact: sealed-bid tendering goes back at least to the 19th century British
Admiralty, which opened supplier envelopes in public at a fixed hour - the
bidding window here is the same idea with a clock instead of a wax seal.
"""

from service_procurement.orchestrator import Workflow, WorkflowOrchestrator, create_workflow

__version__ = "0.1.0"
__all__ = ["WorkflowOrchestrator", "Workflow", "create_workflow", "__version__"]
