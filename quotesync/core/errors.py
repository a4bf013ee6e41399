from __future__ import annotations


class AppError(Exception):
    kind = "app_error"


class BusinessError(AppError):
    kind = "business_error"


class ValidationError(BusinessError):
    kind = "validation_error"


class NoPendingConflictError(BusinessError):
    kind = "no_pending_conflict"


class InfraError(AppError):
    kind = "infra_error"


class PersistenceError(InfraError):
    kind = "persistence_error"


class ExternalServiceError(InfraError):
    kind = "external_service_error"


class FetchError(ExternalServiceError):
    kind = "fetch_error"


class TransientFetchError(FetchError):
    kind = "fetch_transient"


class RemoteAuthError(FetchError):
    kind = "fetch_auth"


class RemoteNotFoundError(FetchError):
    kind = "fetch_not_found"


class SyncError(AppError):
    """Fallo terminal de una sesión de sincronización.

    Envuelve la causa original (``cause``) para que el ``kind`` de la causa
    siga siendo visible para la UI y los logs.
    """

    kind = "sync_error"

    def __init__(self, message: str, *, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause

    @property
    def cause_kind(self) -> str:
        if isinstance(self.cause, AppError):
            return self.cause.kind
        if self.cause is not None:
            return "unexpected_error"
        return self.kind


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, SyncError):
        return exc.cause_kind
    if isinstance(exc, AppError):
        return exc.kind
    return "unexpected_error"
