"""
wgbridge Error Handling

All error codes and exception classes.
"""

from enum import IntEnum
from typing import Optional, Any


class ErrorCode(IntEnum):
    """Bridge error codes."""

    # 1xxx - General / validation errors
    UNKNOWN_ERROR = 1000
    INVALID_NODE_ID = 1001
    INVALID_PUBLIC_KEY = 1002
    INVALID_ADDRESS = 1003
    INVALID_REGISTRY = 1004
    INVALID_PRIVATE_KEY = 1005

    # 2xxx - Ledger errors
    RATE_LIMIT_EXCEEDED = 2001
    REMOTE_CALL_FAILED = 2002
    NETWORK_UNAVAILABLE = 2003
    SIGNER_NOT_CONFIGURED = 2004
    TOKEN_NOT_FOUND = 2005
    UNKNOWN_OPERATION = 2006

    # 3xxx - Registry errors
    NO_ADDRESS_AVAILABLE = 3001
    NODE_ALREADY_REGISTERED = 3002
    REGISTRY_STORAGE = 3003

    # 4xxx - Tunnel configuration errors
    NODE_NOT_IN_REGISTRY = 4001
    CONFIG_VALIDATION_FAILED = 4002
    CONFIG_WRITE_FAILED = 4003
    INTERFACE_RESTART_FAILED = 4004
    NO_BACKUP_AVAILABLE = 4005

    # 5xxx - Bridge configuration errors
    INVALID_CONFIGURATION = 5001


class BridgeError(Exception):
    """Base exception for all bridge errors."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Any] = None
    ):
        self.code = code
        self.message = message
        self.details = details
        super().__init__(f"[{code.value}] {message}")

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for status reports."""
        result = {
            "code": self.code.value,
            "name": self.code.name,
            "message": self.message,
        }
        if self.details is not None:
            result["details"] = self.details
        return result


# ==============================================================================
# Validation Errors (1xxx)
# ==============================================================================

class ValidationError(BridgeError):
    """Malformed input rejected before any remote or file operation."""


class InvalidNodeIdError(ValidationError):
    def __init__(self, node_id: Any, reason: str):
        super().__init__(
            ErrorCode.INVALID_NODE_ID,
            f"Invalid node ID {node_id!r}: {reason}",
            {"node_id": node_id if isinstance(node_id, str) else None}
        )


class InvalidPublicKeyError(ValidationError):
    def __init__(self, reason: str):
        super().__init__(ErrorCode.INVALID_PUBLIC_KEY, f"Invalid public key: {reason}")


class InvalidPrivateKeyError(ValidationError):
    def __init__(self, reason: str):
        super().__init__(ErrorCode.INVALID_PRIVATE_KEY, f"Invalid private key: {reason}")


class InvalidAddressError(ValidationError):
    def __init__(self, address: Any):
        super().__init__(
            ErrorCode.INVALID_ADDRESS,
            f"Invalid ledger address: {address!r}",
            {"address": address if isinstance(address, str) else None}
        )


class InvalidRegistryError(ValidationError):
    def __init__(self, reason: str):
        super().__init__(ErrorCode.INVALID_REGISTRY, f"Invalid registry: {reason}")


# ==============================================================================
# Ledger Errors (2xxx)
# ==============================================================================

class LedgerError(BridgeError):
    """Failure talking to the remote ledger."""


class RateLimitExceededError(LedgerError):
    """Rate limited on every attempt; the operation may be retried later."""

    retryable = True

    def __init__(self, operation: str, attempts: int, message: str = ""):
        super().__init__(
            ErrorCode.RATE_LIMIT_EXCEEDED,
            f"Rate limit exceeded for {operation} after {attempts} attempts"
            + (f": {message}" if message else ""),
            {"operation": operation, "attempts": attempts}
        )
        self.operation = operation
        self.attempts = attempts


class RemoteCallFailedError(LedgerError):
    """Non-retryable rejection from the ledger."""

    retryable = False

    def __init__(
        self,
        operation: str,
        message: str,
        rpc_code: Optional[int] = None,
        code: ErrorCode = ErrorCode.REMOTE_CALL_FAILED,
    ):
        super().__init__(
            code,
            f"Ledger call {operation} failed: {message}",
            {"operation": operation, "rpc_code": rpc_code}
        )
        self.operation = operation
        self.rpc_code = rpc_code


class TokenNotFoundError(RemoteCallFailedError):
    """The ledger reports that the token does not exist."""

    def __init__(self, operation: str, token_id: int):
        super().__init__(
            operation,
            f"token {token_id} does not exist",
            code=ErrorCode.TOKEN_NOT_FOUND,
        )
        self.token_id = token_id


class UnknownOperationError(RemoteCallFailedError):
    def __init__(self, operation: str):
        super().__init__(
            operation,
            "unknown ledger operation",
            code=ErrorCode.UNKNOWN_OPERATION,
        )


class NetworkUnavailableError(LedgerError):
    """Transient connectivity failure."""

    retryable = True

    def __init__(self, operation: str, message: str):
        super().__init__(
            ErrorCode.NETWORK_UNAVAILABLE,
            f"Ledger unreachable during {operation}: {message}",
            {"operation": operation}
        )
        self.operation = operation


class SignerNotConfiguredError(LedgerError):
    def __init__(self, operation: str):
        super().__init__(
            ErrorCode.SIGNER_NOT_CONFIGURED,
            f"Signer not configured; cannot execute {operation}",
            {"operation": operation}
        )
        self.operation = operation


# ==============================================================================
# Registry Errors (3xxx)
# ==============================================================================

class NoAddressAvailableError(BridgeError):
    def __init__(self, cidr: str):
        super().__init__(
            ErrorCode.NO_ADDRESS_AVAILABLE,
            f"No available addresses in {cidr}",
            {"cidr": cidr}
        )


class NodeAlreadyRegisteredError(BridgeError):
    def __init__(self, node_id: str, token_id: int):
        super().__init__(
            ErrorCode.NODE_ALREADY_REGISTERED,
            f"Node {node_id} already registered as token {token_id}",
            {"node_id": node_id, "token_id": token_id}
        )


class RegistryStorageError(BridgeError):
    def __init__(self, path: str, error: str):
        super().__init__(
            ErrorCode.REGISTRY_STORAGE,
            f"Registry storage failure at {path}: {error}",
            {"path": path}
        )


# ==============================================================================
# Tunnel Configuration Errors (4xxx)
# ==============================================================================

class NodeNotInRegistryError(BridgeError):
    def __init__(self, node_id: str):
        super().__init__(
            ErrorCode.NODE_NOT_IN_REGISTRY,
            f"Node {node_id} not found in registry",
            {"node_id": node_id}
        )


class ConfigValidationError(BridgeError):
    def __init__(self, errors: list):
        super().__init__(
            ErrorCode.CONFIG_VALIDATION_FAILED,
            f"Configuration validation failed: {', '.join(errors)}",
            {"errors": list(errors)}
        )
        self.errors = list(errors)


class ConfigWriteError(BridgeError):
    def __init__(self, stage: str, error: str, rolled_back: bool):
        super().__init__(
            ErrorCode.CONFIG_WRITE_FAILED,
            f"Configuration update failed during {stage}: {error}",
            {"stage": stage, "rolled_back": rolled_back}
        )
        self.stage = stage
        self.rolled_back = rolled_back


class InterfaceRestartError(BridgeError):
    def __init__(self, interface: str, command: str, error: str):
        super().__init__(
            ErrorCode.INTERFACE_RESTART_FAILED,
            f"'{command}' failed for {interface}: {error}",
            {"interface": interface, "command": command}
        )


class NoBackupAvailableError(BridgeError):
    def __init__(self):
        super().__init__(ErrorCode.NO_BACKUP_AVAILABLE, "No backup available for rollback")


# ==============================================================================
# Bridge Configuration Errors (5xxx)
# ==============================================================================

class ConfigurationError(BridgeError):
    """Fatal startup configuration problem."""

    def __init__(self, errors: list):
        super().__init__(
            ErrorCode.INVALID_CONFIGURATION,
            f"Invalid configuration: {'; '.join(errors)}",
            {"errors": list(errors)}
        )
        self.errors = list(errors)
