"""
Domain errors for the order fulfillment and billing core.

Every error carries an HTTP status, a machine-readable code and a message.
Routes never build error responses by hand; they raise one of these and the
handler registered in ``flux.create_app`` renders it.
"""


class FluxError(Exception):
    """Base class for all domain errors"""
    status_code = 500
    code = 'internal_error'
    message = 'Internal server error'

    def __init__(self, message=None, **extra):
        super().__init__(message or self.message)
        self.message = message or self.message
        self.extra = extra

    def to_dict(self):
        data = {'success': False, 'error': self.message, 'code': self.code}
        data.update(self.extra)
        return data


# ---------------------------------------------------------------------------
# Caller-correctable input
# ---------------------------------------------------------------------------
class ValidationError(FluxError):
    status_code = 400
    code = 'validation_error'
    message = 'Invalid request'


class AuthenticationRequired(FluxError):
    status_code = 401
    code = 'authentication_required'
    message = 'Authentication required'


class NotAuthorized(FluxError):
    status_code = 403
    code = 'not_authorized'
    message = 'Not authorized for this action'


class AccessExpired(NotAuthorized):
    code = 'credits_expired'
    message = 'Your credits have expired'


class NotAssigned(NotAuthorized):
    code = 'not_assigned'
    message = 'You are not the driver assigned to this order'


# ---------------------------------------------------------------------------
# Missing entities
# ---------------------------------------------------------------------------
class NotFound(FluxError):
    status_code = 404
    code = 'not_found'
    message = 'Not found'


class OrderNotFound(NotFound):
    code = 'order_not_found'
    message = 'Order not found'


class DeliveryNotFound(NotFound):
    code = 'delivery_not_found'
    message = 'Delivery not found'


class PlanNotFound(NotFound):
    code = 'plan_not_found'
    message = 'Plan not found'


class CreditsNotFound(NotFound):
    code = 'credits_not_found'
    message = 'No credits for this user'


class UserNotFound(NotFound):
    code = 'user_not_found'
    message = 'User not found'


# ---------------------------------------------------------------------------
# State machine and races
# ---------------------------------------------------------------------------
class InvalidTransition(FluxError):
    status_code = 409
    code = 'invalid_transition'
    message = 'Order cannot move to the requested status'


class DeliveriesNotValidated(InvalidTransition):
    code = 'deliveries_not_validated'
    message = 'All deliveries must be validated before finishing the order'


class Conflict(FluxError):
    status_code = 409
    code = 'conflict'
    message = 'The resource was modified concurrently'


class OrderUnavailable(Conflict):
    code = 'order_unavailable'
    message = 'This order is no longer available'


class DriverBusy(Conflict):
    code = 'driver_busy'
    message = 'Finish your current delivery before accepting another order'


class AlreadyValidated(Conflict):
    code = 'already_validated'
    message = 'Delivery already validated'


class CodeNotIssued(Conflict):
    code = 'code_not_issued'
    message = 'No code set for this delivery'


class OrderNotRateable(Conflict):
    code = 'order_not_completed'
    message = 'Only completed orders can be rated'


class AlreadyRated(Conflict):
    code = 'already_rated'
    message = 'You have already rated this order'


class AttemptsExceeded(FluxError):
    status_code = 423
    code = 'attempts_exceeded'
    message = 'Maximum validation attempts exceeded'


class InvalidCode(FluxError):
    status_code = 400
    code = 'invalid_code'
    message = 'Invalid delivery code'


# ---------------------------------------------------------------------------
# Webhook integrity and contract violations
# ---------------------------------------------------------------------------
class WebhookError(FluxError):
    status_code = 400
    code = 'webhook_error'


class InvalidSignature(WebhookError):
    code = 'invalid_signature'
    message = 'Invalid signature'


class InvalidPayload(WebhookError):
    code = 'invalid_payload'
    message = 'Invalid JSON payload'


class MissingMetadata(WebhookError):
    code = 'missing_metadata'
    message = 'Missing fulfillment metadata'


class UnknownPlan(WebhookError):
    code = 'unknown_plan'
    message = 'Unknown plan'


class WebhookNotConfigured(FluxError):
    code = 'webhook_not_configured'
    message = 'Stripe webhook secret is not configured'


# ---------------------------------------------------------------------------
# External dependencies
# ---------------------------------------------------------------------------
class ExternalDependencyError(FluxError):
    status_code = 502
    code = 'external_dependency_error'
    message = 'Payment gateway error'


class ExternalDependencyTimeout(ExternalDependencyError):
    status_code = 504
    code = 'external_dependency_timeout'
    message = 'Payment gateway did not respond in time'
