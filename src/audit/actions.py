"""Namespaced audit action tags."""


class AuditAction:
    """Common audit actions for easy reference."""

    # Authentication
    AUTH_LOGIN_SUCCESS = "auth:login_success"
    AUTH_LOGIN_FAILED = "auth:login_failed"
    AUTH_LOGOUT = "auth:logout"

    # Template management
    TEMPLATE_CREATE = "template:create"
    TEMPLATE_UPDATE = "template:update"
    TEMPLATE_DELETE = "template:delete"
    TEMPLATE_VIEW = "template:view"

    # Deployment lifecycle
    DEPLOYMENT_CREATE = "deployment:create"
    DEPLOYMENT_PLAN = "deployment:plan"
    DEPLOYMENT_PLAN_COMPLETE = "deployment:plan_complete"
    DEPLOYMENT_PLAN_FAILED = "deployment:plan_failed"
    DEPLOYMENT_EXECUTE = "deployment:execute"
    DEPLOYMENT_APPLY_COMPLETE = "deployment:apply_complete"
    DEPLOYMENT_APPLY_FAILED = "deployment:apply_failed"
    DEPLOYMENT_CANCEL = "deployment:cancel"
    DEPLOYMENT_CANCEL_REQUESTED = "deployment:cancel_requested"
    DEPLOYMENT_PRECONDITION_WARNING = "deployment:precondition_warning"
    DEPLOYMENT_WORKSPACE_CLEANUP = "deployment:workspace_cleanup"

    # Instance management
    INSTANCE_START = "instance:start"
    INSTANCE_STOP = "instance:stop"
    INSTANCE_RESTART = "instance:restart"

    # Settings
    SETTINGS_UPDATE = "settings:update"
    SETTINGS_VIEW = "settings:view"

    # System
    SYSTEM_STARTUP = "system:startup"
    SYSTEM_SHUTDOWN = "system:shutdown"
    SYSTEM_MAINTENANCE = "system:maintenance"
    AUDIT_PURGE = "system:audit_purge"
