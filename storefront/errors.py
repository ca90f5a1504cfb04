class APIError(Exception):
    """Error that is rendered to the client as ``{"message", "code", ...}``."""

    status_code = 500
    code = 'SERVER_ERROR'
    message = 'Something went wrong!'

    def __init__(self, message=None, code=None, status_code=None, **extra):
        super().__init__(message or self.message)
        self.message = message or self.message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.extra = extra

    def to_dict(self):
        body = {'message': self.message, 'code': self.code}
        body.update(self.extra)
        return body


class ValidationError(APIError):
    status_code = 400
    code = 'VALIDATION_ERROR'
    message = 'Invalid input'


class AuthenticationError(APIError):
    status_code = 401
    code = 'NOT_AUTHENTICATED'
    message = 'Not authenticated'


class PermissionDenied(APIError):
    status_code = 403
    code = 'FORBIDDEN'
    message = 'Access denied'


class NotFound(APIError):
    status_code = 404
    code = 'NOT_FOUND'
    message = 'Not found'


class BusinessRuleError(APIError):
    status_code = 400
    code = 'BUSINESS_RULE_VIOLATION'
    message = 'Request cannot be completed'


class EmptyCartError(BusinessRuleError):
    code = 'EMPTY_CART'
    message = 'Cart is empty'


class InsufficientStockError(BusinessRuleError):
    code = 'INSUFFICIENT_STOCK'
    message = 'Product is not available in the requested quantity'


class OrderCreationError(APIError):
    code = 'ORDER_CREATION_FAILED'
    message = 'Failed to create order'
