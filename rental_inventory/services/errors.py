from __future__ import annotations


class RentalServiceError(RuntimeError):
    kind = "error"
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict:
        return {"detail": self.message, "kind": self.kind}


class NotFoundError(RentalServiceError):
    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, identifier=None, message: str | None = None):
        self.entity = entity
        self.identifier = identifier
        if message is None:
            message = f"{entity} not found" if identifier is None else f"{entity} not found: {identifier}"
        super().__init__(message)


class ForbiddenError(RentalServiceError):
    kind = "forbidden"
    status_code = 403


class InputValidationError(RentalServiceError):
    kind = "validation"
    status_code = 400


class NoStockError(RentalServiceError):
    kind = "no_stock"
    status_code = 409


class InvalidTransitionError(RentalServiceError):
    kind = "invalid_transition"
    status_code = 409
