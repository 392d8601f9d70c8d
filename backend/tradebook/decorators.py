# Overview: Request and permission decorators for API routes, plus request-scoped context helpers.

from functools import wraps

from flask import current_app, g, jsonify, request

from .errors import LedgerError
from .services import permission_service, session_service
from .services.concurrency import run_with_retry
from .services.permission_service import PermissionDeniedError
from .services.unit_of_work import ExecutionContext


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    return auth_header.split(" ", 1)[1].strip() or None


def require_auth(f):
    """
    Require a valid session token.

    Sets g.current_user and g.session_token.

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired or revoked token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            return jsonify({"error": "Authentication required"}), 401

        user = session_service.validate_session(token)
        if not user:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = user
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission (checked through the app's permission cache)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            cache = current_app.extensions.get("permission_cache")
            try:
                permission_service.require_permission(g.current_user, permission_code, cache)
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e)
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def execution_context() -> ExecutionContext:
    """
    Context for the current request: principal, deadline and notifier.

    Built fresh per call so a retried operation gets a fresh deadline.
    """
    user = getattr(g, "current_user", None)
    return ExecutionContext.with_timeout(
        current_app.config.get("TX_TIMEOUT_SECONDS"),
        user_id=user.id if user else None,
        role=user.role.name if user is not None and user.role is not None else None,
        notifier=current_app.extensions.get("stock_events"),
    )


def call_with_retry(operation):
    """Run operation(ctx) with whole-operation retry on transient store errors."""
    return run_with_retry(
        lambda: operation(execution_context()),
        attempts=current_app.config.get("TX_RETRY_ATTEMPTS", 3),
        backoff_base=current_app.config.get("TX_RETRY_BACKOFF_SECONDS", 0.1),
    )


def error_response(e: LedgerError):
    return jsonify(e.to_dict()), e.http_status
