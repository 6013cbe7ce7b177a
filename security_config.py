#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Security configuration for the Research Vault API
Error verbosity, database file permissions and security event logging
"""

import os
import stat
import logging

logger = logging.getLogger(__name__)

# ============================================================================
# Security Settings
# ============================================================================

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SECURITY_MONITORING_ENABLED = os.getenv("SECURITY_MONITORING_ENABLED", "true").lower() == "true"

# Debug Mode (affects error message verbosity)
DEBUG_MODE = os.getenv("DEBUG_MODE", "false").lower() == "true"

# Database Security
DATABASE_FILE_PERMISSIONS = stat.S_IRUSR | stat.S_IWUSR  # 600 (owner read/write only)


def secure_database_file(db_path: str) -> bool:
    """
    Set secure permissions on database file.

    Args:
        db_path: Path to database file

    Returns:
        True if successful, False otherwise
    """
    try:
        if os.path.exists(db_path):
            os.chmod(db_path, DATABASE_FILE_PERMISSIONS)
            logger.info(f"Secured database file permissions: {db_path}")
            return True
        logger.warning(f"Database file does not exist: {db_path}")
        return False
    except OSError as e:
        logger.error(f"Failed to set database permissions: {e}")
        return False


def get_generic_error_message(detailed_error: str, fallback: str = "") -> str:
    """Return the detailed message in DEBUG_MODE, the caller's generic one otherwise."""
    if DEBUG_MODE:
        return detailed_error
    return fallback or "Service temporarily unavailable. Please try again later."


def mask_email(email: str) -> str:
    email = email or ""
    return f"{email[:3]}***@{email.split('@')[1] if '@' in email else 'unknown'}"


def client_ip(request) -> str:
    """Best-effort client address (ProxyFix rewrites remote_addr behind nginx)."""
    return (request.remote_addr or "unknown") if request is not None else "unknown"


# ============================================================================
# Security Event Logging
# ============================================================================

class SecurityEventLogger:
    """Log security-relevant events for monitoring and auditing."""

    @staticmethod
    def log_login(email: str, ip_address: str, success: bool, reason: str = ""):
        if SECURITY_MONITORING_ENABLED:
            status = "SUCCESS" if success else "FAILED"
            reason_info = f"|reason={reason}" if reason else ""
            logger.info(f"LOGIN|{status}|email={mask_email(email)}|ip={ip_address[:8]}***{reason_info}")

    @staticmethod
    def log_logout(email: str):
        if SECURITY_MONITORING_ENABLED:
            logger.info(f"LOGOUT|email={mask_email(email)}")

    @staticmethod
    def log_permission_denied(email: str, permission: str, path: str):
        """Log a request rejected for lack of a role permission."""
        if SECURITY_MONITORING_ENABLED:
            logger.warning(f"PERMISSION_DENIED|email={mask_email(email)}|permission={permission}|path={path}")

    @staticmethod
    def log_account_created(created_email: str, created_by: str, role: str):
        if SECURITY_MONITORING_ENABLED:
            logger.info(f"ACCOUNT_CREATED|email={mask_email(created_email)}|by={mask_email(created_by)}|role={role}")

    @staticmethod
    def log_account_status(email: str, status: str, changed_by: str):
        if SECURITY_MONITORING_ENABLED:
            logger.info(f"ACCOUNT_STATUS|email={mask_email(email)}|status={status}|by={mask_email(changed_by)}")

    @staticmethod
    def log_security_error(error_type: str, details: str):
        if SECURITY_MONITORING_ENABLED:
            logger.error(f"SECURITY_ERROR|type={error_type}|details={details}")


# Export security event logger singleton
security_events = SecurityEventLogger()
