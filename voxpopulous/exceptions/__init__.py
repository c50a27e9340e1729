"""Custom exceptions for the Voxpopulous back-office."""


class VoxError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="Une erreur interne est survenue", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class BusinessLogicError(VoxError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(VoxError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Ressource introuvable", payload=None):
        super().__init__(message, 404, payload)


class HierarchyError(BusinessLogicError):
    """Raised when a parent link would break the tenant tree."""


class AuthenticationRequiredError(VoxError):
    """Raised when the request carries no usable session for this scope."""
    def __init__(self, login_url, message="Authentification requise"):
        super().__init__(message, 401, {'login_url': login_url})
        self.login_url = login_url


class PermissionDeniedError(VoxError):
    """Raised when a principal lacks permission for an action."""
    def __init__(self, message="Accès non autorisé pour votre compte", payload=None):
        rv = {'reason': 'permission_denied'}
        rv.update(payload or {})
        super().__init__(message, 403, rv)


class FeatureNotEnabledError(VoxError):
    """Raised when the tenant's plan does not include a feature."""
    def __init__(self, feature_code, message="Disponible avec le forfait supérieur"):
        super().__init__(message, 403, {'reason': 'upgrade_required', 'feature': feature_code})
        self.feature_code = feature_code


class QuotaExceededError(VoxError):
    """Raised when creating a resource would go over the tenant's quota."""
    status = 403
    reason = 'quota_exceeded'

    def __init__(self, resource, used, allowed, label=None, message=None):
        label = label or resource
        message = message or f"Quota atteint : {used}/{allowed} {label} utilisés"
        super().__init__(message, self.status, {
            'reason': self.reason,
            'resource': resource,
            'used': used,
            'allowed': allowed,
        })
        self.resource = resource
        self.used = used
        self.allowed = allowed


class QuotaRaceLostError(QuotaExceededError):
    """Raised when a concurrent request consumed the last quota unit first."""
    status = 409
    reason = 'quota_race_lost'


class AddonNotAvailableError(VoxError):
    """Raised when an addon is not purchasable on the tenant's plan."""
    def __init__(self, addon_code, message=None):
        message = message or f"L'option {addon_code} n'est pas disponible avec votre forfait"
        super().__init__(message, 403, {'reason': 'addon_not_available', 'addon': addon_code})
        self.addon_code = addon_code


class BillingBlockedError(VoxError):
    """Raised on writes while the billing owner is blocked for non-payment."""
    def __init__(self, message, action_url=None):
        super().__init__(message, 403, {'reason': 'billing_blocked', 'action_url': action_url})


class TenantSuspendedError(VoxError):
    """Raised on writes while the tenant lifecycle is suspended (read-only)."""
    def __init__(self, message):
        super().__init__(message, 403, {'reason': 'tenant_suspended'})
