# ecofinds/errors.py


class MarketplaceError(Exception):
    status_code = 400

    def __init__(self, message=None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(MarketplaceError):
    status_code = 400


class ConstraintViolation(MarketplaceError):
    status_code = 409


class AlreadyExists(ConstraintViolation):
    pass


class NotFound(MarketplaceError):
    status_code = 404


class UploadFailed(MarketplaceError):
    status_code = 502


class AuthorizationError(MarketplaceError):
    status_code = 403


class InvalidCredentials(MarketplaceError):
    status_code = 401


class UnknownCollection(KeyError):
    pass
