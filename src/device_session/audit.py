"""Audit logging helpers for device-session.

Every connection, channel and command event goes through these helpers so
that log records carry the same structured ``extra`` fields and can be
rendered by both the text and JSON formatters.
"""

import logging
import typing as t

from enum import StrEnum


# Sensitive field names that should be redacted in logs
SENSITIVE_FIELDS = {
    "password",
    "passwd",
    "passphrase",
    "secret",
    "token",
    "private_key",
    "privatekey",
    "client_keys",
}


class Event(StrEnum):
    CHANNEL_INTERRUPTED = "CHANNEL_INTERRUPTED"
    CHANNEL_REFUSED = "CHANNEL_REFUSED"
    CONNECTION_CREATED = "CONNECTION_CREATED"
    CONNECTION_DROPPED = "CONNECTION_DROPPED"
    CONNECTION_EVICTED = "CONNECTION_EVICTED"
    REMOTE_EXEC = "REMOTE_EXEC"
    REMOTE_EXEC_ERROR = "REMOTE_EXEC_ERROR"
    SSH_AUTH_FAILED = "SSH_AUTH_FAILED"
    SSH_CONNECT = "SSH_CONNECT"
    SSH_CONNECTING = "SSH_CONNECTING"


class Status(StrEnum):
    success = "success"
    failed = "failed"


def sanitize_parameters(params: dict[str, t.Any]) -> dict[str, t.Any]:
    """
    Redact sensitive fields from a parameter mapping.

    Keys are compared case-insensitively with ``_`` and ``-`` removed, and
    nested mappings are sanitized recursively.
    """
    if not params:
        return params

    sensitive = {field.replace("_", "") for field in SENSITIVE_FIELDS}
    sanitized = {}
    for key, value in params.items():
        normalized = key.lower().replace("_", "").replace("-", "")
        if any(field in normalized for field in sensitive):
            sanitized[key] = "***REDACTED***"
        elif isinstance(value, dict):
            sanitized[key] = sanitize_parameters(value)
        else:
            sanitized[key] = value

    return sanitized


def log_ssh_connect(
    host: str,
    username: str | None = None,
    status: str = Status.success,
    device: str | None = None,
    key_path: str | None = None,
    error: str | None = None,
):
    """
    Log an SSH session establishment attempt.

    Verbosity is tiered based on log level:
    - INFO: Basic connection success
    - DEBUG: Also the key path used for authentication
    - WARNING: Failures, with the reason when known
    """
    logger = logging.getLogger(__name__)
    user_host = f"{username}@{host}" if username else host
    extra = {
        "host": host,
        "username": username,
        "device": device,
        "status": str(status),
    }

    if status == Status.success:
        if key_path and logger.isEnabledFor(logging.DEBUG):
            extra["key"] = key_path

        logger.info(f"{Event.SSH_CONNECT}: {user_host}", extra=extra)
        return

    message = f"{Event.SSH_AUTH_FAILED}: {user_host}"
    if error:
        extra["reason"] = error
        message += f" | reason: {error}"

    logger.warning(message, extra=extra)


def log_ssh_command(
    command: str,
    device: str,
    exit_code: int,
    duration: float | None = None,
    channel: str | None = None,
):
    """
    Log a completed remote command.

    The duration and channel id are only included at DEBUG level.
    """
    logger = logging.getLogger(__name__)

    extra = {
        "command": command,
        "device": device,
        "exit_code": exit_code,
    }

    message = f"{Event.REMOTE_EXEC}: {command} | device={device} | exit_code={exit_code}"

    if logger.isEnabledFor(logging.DEBUG):
        if channel is not None:
            extra["channel"] = channel
        if duration is not None:
            extra["duration"] = f"{duration:.3f}s"
            message += f" | duration={duration:.3f}s"

    logger.info(message, extra=extra)


def log_connection_lifecycle(event: Event, connection_id: str, device: str, reason: str | None = None):
    """Log creation, eviction or teardown of a pooled connection."""
    logger = logging.getLogger(__name__)

    extra = {"event": str(event), "connection": connection_id, "device": device}
    message = f"{event}: {connection_id} | device={device}"
    if reason:
        extra["reason"] = reason
        message += f" | reason: {reason}"

    logger.info(message, extra=extra)
