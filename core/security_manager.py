# core/security_manager.py
"""
Security Manager for the beer review application
Implements:
- Encryption of personal data (customer fiscal codes)
- Password hashing and verification
- Audit logging of security events
"""

import base64
import hmac
import json
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

import redis
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from flask import has_request_context, request, session

from core.database_models import utcnow

# Configure logging
logger = logging.getLogger(__name__)


@dataclass
class SecurityAuditLog:
    """Security audit log entry"""
    timestamp: str
    event_type: str
    user_id: Optional[str]
    source_ip: str
    resource: str
    action: str
    details: Dict[str, Any]


class SecurityManager:
    """
    Encryption, password hashing and audit trail
    """

    def __init__(self, app=None, redis_client: Optional[redis.Redis] = None):
        """
        Initialize security manager

        Args:
            app: Flask application instance
            redis_client: Redis client for the audit trail, None to log only
        """
        self.app = app
        self.redis_client = redis_client

        config = app.config if app else {}
        self.password_iterations = config.get('PASSWORD_HASH_ITERATIONS', 200000)
        self.audit_retention_days = config.get('AUDIT_LOG_RETENTION_DAYS', 90)

        # Initialize encryption
        self.cipher = None
        self._init_encryption()

        logger.info("SecurityManager initialized")

    def _init_encryption(self):
        """Initialize encryption system with key derivation"""
        master_key = self._get_or_generate_master_key()
        salt = b'beer_review_salt'
        if self.app:
            salt = self.app.config.get('ENCRYPTION_SALT', salt)

        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=100000,
            backend=default_backend()
        )

        key = base64.urlsafe_b64encode(kdf.derive(master_key.encode()))
        self.cipher = Fernet(key)
        logger.info("Encryption system initialized")

    def _get_or_generate_master_key(self) -> str:
        """Get or generate master encryption key"""
        if self.app and self.app.config.get('ENCRYPTION_KEY'):
            return self.app.config['ENCRYPTION_KEY']

        # Data encrypted with a generated key is unreadable after a restart
        master_key = secrets.token_urlsafe(32)
        logger.warning("Generated new master key - set ENCRYPTION_KEY to keep encrypted data readable")
        return master_key

    def encrypt_sensitive_data(self, data: str) -> str:
        """
        Encrypt sensitive data with authenticated encryption

        Args:
            data: Plain text data to encrypt

        Returns:
            Base64 encoded encrypted data
        """
        if not isinstance(data, str):
            data = str(data)

        encrypted = self.cipher.encrypt(data.encode('utf-8'))
        return base64.b64encode(encrypted).decode('ascii')

    def decrypt_sensitive_data(self, encrypted_data: str) -> str:
        """
        Decrypt sensitive data with integrity verification

        Raises:
            InvalidToken: the data was tampered with or encrypted with another key
        """
        try:
            encrypted_bytes = base64.b64decode(encrypted_data.encode('ascii'))
            return self.cipher.decrypt(encrypted_bytes).decode('utf-8')
        except InvalidToken:
            logger.error("Decryption failed: invalid token")
            raise

    def hash_password(self, password: str, salt: Optional[str] = None) -> Tuple[str, str]:
        """
        Hash password with secure salt

        Args:
            password: Plain text password
            salt: Optional salt (generates new if not provided)

        Returns:
            Tuple of (hashed_password, salt)
        """
        if salt is None:
            salt = secrets.token_hex(16)

        # Use PBKDF2 with high iteration count
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt.encode(),
            iterations=self.password_iterations,
            backend=default_backend()
        )

        hashed = base64.b64encode(kdf.derive(password.encode())).decode()
        return hashed, salt

    def verify_password(self, password: str, hashed_password: str, salt: str) -> bool:
        """
        Verify password against hash

        Args:
            password: Plain text password to verify
            hashed_password: Stored password hash
            salt: Password salt

        Returns:
            True if password is valid
        """
        if not password or not hashed_password or not salt:
            return False
        computed_hash, _ = self.hash_password(password, salt)
        return hmac.compare_digest(hashed_password, computed_hash)

    def log_security_event(self, event_type: str, details: Dict[str, Any] = None):
        """
        Log security event for audit trail

        Args:
            event_type: Type of security event
            details: Additional event details
        """
        in_request = has_request_context()
        log_entry = SecurityAuditLog(
            timestamp=utcnow().isoformat(),
            event_type=event_type,
            user_id=session.get('user_id') if in_request else None,
            source_ip=(request.remote_addr or 'unknown') if in_request else 'system',
            resource=(request.endpoint or request.path) if in_request else 'system',
            action=request.method if in_request else 'system',
            details=details or {}
        )

        logger.info(f"Security event: {event_type} from {log_entry.source_ip} {log_entry.details}")

        if self.redis_client is None:
            return

        # Store in Redis for the administrator dashboard
        try:
            log_key = f"audit_log:{log_entry.timestamp}:{secrets.token_hex(4)}"
            self.redis_client.setex(
                log_key,
                86400 * self.audit_retention_days,
                json.dumps(log_entry.__dict__, default=str)
            )
        except redis.RedisError as e:
            logger.error(f"Failed to store security event: {str(e)}")

    def get_security_metrics(self, hours: int = 24) -> Dict[str, Any]:
        """
        Summarise recent audit events for the dashboard

        Args:
            hours: Number of hours to analyze
        """
        if self.redis_client is None:
            return {'timeframe_hours': hours, 'total_events': 0, 'event_types': {}, 'available': False}

        start_time = (utcnow() - timedelta(hours=hours)).isoformat()
        event_types: Dict[str, int] = {}
        source_ips = set()

        try:
            for key in self.redis_client.scan_iter(match='audit_log:*', count=500):
                raw = self.redis_client.get(key)
                if not raw:
                    continue
                entry = json.loads(raw)
                if entry.get('timestamp', '') < start_time:
                    continue
                event_type = entry.get('event_type', 'unknown')
                event_types[event_type] = event_types.get(event_type, 0) + 1
                if entry.get('source_ip'):
                    source_ips.add(entry['source_ip'])
        except redis.RedisError as e:
            logger.error(f"Failed to get security metrics: {str(e)}")
            return {'timeframe_hours': hours, 'total_events': 0, 'event_types': {}, 'available': False}

        total_events = sum(event_types.values())
        return {
            'timeframe_hours': hours,
            'total_events': total_events,
            'unique_ips': len(source_ips),
            'event_types': event_types,
            'top_event_types': sorted(event_types.items(), key=lambda x: x[1], reverse=True)[:5],
            'available': True,
        }


# Global security manager instance
security_manager: Optional[SecurityManager] = None


def init_security_manager(app, redis_client=None) -> SecurityManager:
    """Initialize global security manager"""
    global security_manager
    security_manager = SecurityManager(app, redis_client)
    return security_manager


def get_security_manager() -> SecurityManager:
    if security_manager is None:
        raise RuntimeError("Security manager not initialised; call create_app first")
    return security_manager
