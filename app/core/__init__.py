"""
Core Application - Infrastructure & Base Classes

Generic building blocks shared by the domain apps (bookings, payments,
notifications). Nothing in here knows about payments or refunds.

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Services (import from core.services):
    - BaseService: Base class for service layer (logger, atomic)
    - ServiceResult: Standard result wrapper for success/failure handling

Exceptions (import from core.exceptions):
    - BaseApplicationError: Base exception with error codes
    - ValidationError: Input validation failures
    - NotFoundError: Resource not found
    - ConflictError: State conflicts (duplicates, lock contention)
    - ExternalServiceError: Third-party service failures

Views (import from core.views):
    - health_check: Liveness/readiness endpoint
"""
