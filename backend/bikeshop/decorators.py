# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import Response, request, jsonify, g, current_app

from .errors import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PartialFailureError,
    StoreUnavailableError,
    ValidationError,
)
from .services import collection_service, session_service, permission_service
from .services.permission_service import AuthContext, PermissionDeniedError


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def current_actor() -> AuthContext:
    """AuthContext for the authenticated user of this request."""
    return g.actor


def require_auth(f):
    """
    Require authentication.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object
    - g.actor: AuthContext handed to engine operations

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid or expired token
    - User account deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")

        if not auth_header or not auth_header.startswith("Bearer "):
            return jsonify({"error": "Authentication required"}), 401

        token = auth_header.split(" ", 1)[1]

        context = session_service.validate_session(token)

        if not context:
            return jsonify({"error": "Invalid or expired token"}), 401

        g.current_user = context.user
        g.session_context = context
        g.actor = AuthContext.for_user(
            context.user,
            ip_address=request.remote_addr,
            user_agent=request.headers.get("User-Agent"),
        )

        return f(*args, **kwargs)

    return decorated_function


def require_permission(permission_code: str):
    """Require a specific permission. Denials are logged to security_events."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            # Ensure @require_auth was called first
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.authorize(g.actor, permission_code, resource=request.path)
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permission": permission_code,
                    "message": str(e)
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def require_any_permission(*permission_codes):
    """Require any of the specified permissions."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return jsonify({"error": "Authentication required"}), 401

            try:
                permission_service.authorize_any(g.actor, permission_codes, resource=request.path)
            except PermissionDeniedError as e:
                return jsonify({
                    "error": "Permission denied",
                    "required_permissions": list(permission_codes),
                    "message": str(e)
                }), 403

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def handle_domain_errors(action: str):
    """
    Translate domain errors raised by engine operations into JSON responses.

        ValidationError          400
        PermissionDeniedError    403
        NotFoundError            404
        Conflict/InvalidTransition 409
        PartialFailureError      500 (orphan_bike_id attached)
        StoreUnavailableError    503

    Anything else is logged with its stack trace and answered with 500.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            try:
                return f(*args, **kwargs)
            except ValidationError as e:
                return jsonify({"error": str(e)}), 400
            except PermissionDeniedError as e:
                return jsonify({"error": "Permission denied", "message": str(e)}), 403
            except NotFoundError as e:
                return jsonify({"error": str(e)}), 404
            except InvalidTransitionError as e:
                return jsonify({
                    "error": str(e),
                    "current_status": e.current_status,
                    "requested_status": e.requested_status,
                }), 409
            except ConflictError as e:
                return jsonify({"error": str(e)}), 409
            except PartialFailureError as e:
                current_app.logger.error("Partial failure during %s: %s", action, e)
                return jsonify({
                    "error": str(e),
                    "orphan_bike_id": e.orphan_bike_id,
                    "settlement_id": e.settlement_id,
                }), 500
            except StoreUnavailableError as e:
                current_app.logger.warning("Store unavailable during %s: %s", action, e)
                return jsonify({"error": "Record store unavailable, retry later"}), 503
            except Exception:
                current_app.logger.exception("Failed to %s", action)
                return jsonify({"error": "Internal server error"}), 500

        return decorated_function
    return decorator


def collection_response(collection: str, build):
    """
    JSON response tagged with the collection version.

    A matching If-None-Match short-circuits to 304 without calling build().
    """
    tag = collection_service.etag_value(collection)
    if request.if_none_match.contains(tag):
        resp = Response(status=304)
        resp.set_etag(tag)
        return resp

    resp = jsonify(build())
    resp.set_etag(tag)
    return resp
