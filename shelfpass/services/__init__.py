"""
Subscription, quota and catalog services.

Entitlements are checked and consumed by EntitlementService; requests for a
plan go through SubscriptionRequestService; CatalogService lists, adds and
maintains books, running new titles through the fuzzy duplicate check.
"""

from shelfpass.services.similarity import bigram_similarity, find_similar_titles
from shelfpass.services.plans import PlanLimits, limits_for
from shelfpass.services.entitlement_service import (
    EntitlementService, AccessDecision, DenialReason, BulkResult
)
from shelfpass.services.subscription_requests import SubscriptionRequestService, RequestOutcome
from shelfpass.services.catalog_service import CatalogService, DuplicateBookError

__all__ = [
    'bigram_similarity',
    'find_similar_titles',
    'PlanLimits',
    'limits_for',
    'EntitlementService',
    'AccessDecision',
    'DenialReason',
    'BulkResult',
    'SubscriptionRequestService',
    'RequestOutcome',
    'CatalogService',
    'DuplicateBookError',
]
