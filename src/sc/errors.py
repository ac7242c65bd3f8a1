"""Error taxonomy for the contract workflow.

Every error carries an HTTP-class ``status_code`` and a machine ``code`` so the
web layer and the CLI can surface it without a lookup table.
"""

from __future__ import annotations


class ContractError(Exception):
    status_code = 400
    code = "contract_error"

    def __init__(self, message: str = ""):
        super().__init__(message or self.code.replace("_", " "))
        self.message = message or self.code.replace("_", " ")

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class TemplateInvalid(ContractError):
    status_code = 422
    code = "template_invalid"


class TemplateNotFound(ContractError):
    status_code = 404
    code = "template_not_found"


class MissingRequiredField(ContractError):
    status_code = 422
    code = "missing_required_field"

    def __init__(self, labels: list[str]):
        self.labels = list(labels)
        super().__init__(f"Missing required fields: {', '.join(self.labels)}")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "missing": self.labels}


class InvalidTransition(ContractError):
    status_code = 409
    code = "invalid_transition"

    def __init__(self, current, attempted):
        self.current = getattr(current, "value", current)
        self.attempted = getattr(attempted, "value", attempted)
        super().__init__(f"Cannot move contract from {self.current} to {self.attempted}")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "current": self.current, "attempted": self.attempted}


class ContractNotFound(ContractError):
    status_code = 404
    code = "contract_not_found"


class NotSignable(ContractError):
    status_code = 409
    code = "not_signable"

    MESSAGES = {
        "contract_not_signable": "This contract is not open for signatures.",
        "already_signed": "This party has already signed the contract.",
        "expired": "This signing link has expired.",
    }

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(self.MESSAGES.get(reason, "This contract cannot be signed."))

    def to_dict(self) -> dict:
        return {**super().to_dict(), "reason": self.reason}


class TokenNotFound(NotSignable):
    status_code = 404
    code = "token_not_found"

    def __init__(self):
        # Deliberately generic: says nothing about which contracts exist
        ContractError.__init__(self, "Signing link not found.")
        self.reason = "not_found"


class ValidationError(ContractError):
    status_code = 400
    code = "validation_error"

    def __init__(self, errors: list[str]):
        self.errors = list(errors)
        super().__init__("; ".join(self.errors))

    def to_dict(self) -> dict:
        return {**super().to_dict(), "errors": self.errors}


class PersistenceError(ContractError):
    status_code = 503
    code = "persistence_error"


class DeliveryError(ContractError):
    """Every configured notification channel failed."""

    status_code = 502
    code = "delivery_failed"
