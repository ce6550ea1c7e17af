# Services package - business logic and external integrations
from app.services.storage import StorageService
from app.services.asset_persist import AssetPersistService, PersistedRef
from app.services.idempotency import get_idempotency_store, idempotency_key
from app.services.job_machine import JobStateMachine
from app.services.payment_machine import PaymentStateMachine
from app.services.dispatcher import WebhookDispatcher, DispatchResult
from app.services.generation_client import GenerationProviderClient

__all__ = [
    "StorageService",
    "AssetPersistService",
    "PersistedRef",
    "get_idempotency_store",
    "idempotency_key",
    "JobStateMachine",
    "PaymentStateMachine",
    "WebhookDispatcher",
    "DispatchResult",
    "GenerationProviderClient",
]
