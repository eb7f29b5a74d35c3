"""
Procurement Module - requests, offers and evaluation

This module implements the procurement domain:
- Service request lifecycle (DRAFT → ... → ORDERED, with expiry and reactivation)
- Role-based permissions with request ownership
- Append-only offer intake with quota and bidding window
- Weighted offer evaluation and ranking
"""

from service_procurement.procurement.models import (
    Actor,
    Evaluation,
    EvaluationRow,
    EvaluationWeights,
    LanguageRequirement,
    Offer,
    RequestStatus,
    RequestType,
    Role,
    RoleDemand,
    ServiceRequest,
)
from service_procurement.procurement.commands import (
    CreateServiceRequest,
    LanguageSpec,
    OfferScoreSpec,
    SaveEvaluation,
    SubmitOffer,
    UpdateServiceRequest,
)

__all__ = [
    # Models
    "Actor",
    "Role",
    "RequestStatus",
    "RequestType",
    "RoleDemand",
    "LanguageRequirement",
    "ServiceRequest",
    "Offer",
    "EvaluationWeights",
    "EvaluationRow",
    "Evaluation",
    # Commands
    "CreateServiceRequest",
    "UpdateServiceRequest",
    "LanguageSpec",
    "SubmitOffer",
    "OfferScoreSpec",
    "SaveEvaluation",
]
