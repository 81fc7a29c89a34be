"""Error taxonomy shared by the billing services.

Services raise these; controllers turn them into ``{"error": message}``
JSON bodies with ``status_code``.
"""


class BillingError(Exception):
    status_code = 500

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class Unauthorized(BillingError):
    status_code = 401


class NotFound(BillingError):
    status_code = 404


class InvalidSignature(BillingError):
    status_code = 400


class GatewayError(BillingError):
    status_code = 400


class ConfigurationError(BillingError):
    status_code = 500


class AlreadyCancelled(BillingError):
    status_code = 400


class PaymentNotSuccessful(BillingError):
    status_code = 400


class ValidationError(BillingError):
    status_code = 400
