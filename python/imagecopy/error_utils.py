"""
Error message utilities for providing actionable guidance to operators.

Every failure the relocation engine surfaces is an ActionableError carrying
a category, suggested fixes and context details. The subclasses map onto the
engine's error taxonomy so callers can tell configuration problems apart from
transfer failures without parsing messages.
"""

from typing import List, Optional, Dict, Any
from enum import Enum


class ErrorCategory(Enum):
    """Categories of errors for better error handling"""
    CONFIGURATION = "configuration"
    AUTHENTICATION = "authentication"
    LOCATOR = "locator"
    TRANSFER = "transfer"
    DIGEST = "digest"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class ActionableError(Exception):
    """Exception with actionable guidance for operators"""

    def __init__(self, message: str, category: ErrorCategory = ErrorCategory.UNKNOWN,
                 suggestions: Optional[List[str]] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize actionable error

        Args:
            message: Primary error message
            category: Error category for classification
            suggestions: List of suggested fixes
            details: Additional context information
        """
        self.message = message
        self.category = category
        self.suggestions = suggestions or []
        self.details = details or {}
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the complete error message with suggestions"""
        lines = [f"❌ {self.message}"]

        if self.suggestions:
            lines.append("\n💡 Suggested fixes:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"   {i}. {suggestion}")

        if self.details:
            lines.append("\n📋 Additional details:")
            for key, value in self.details.items():
                lines.append(f"   {key}: {value}")

        return "\n".join(lines)


class ConfigurationError(ActionableError):
    """Missing registry selector, missing credentials or invalid settings. Never retried."""


class LocatorError(ActionableError):
    """An image reference could not be turned into a transport locator. Never retried."""


class CopyError(ActionableError):
    """A manifest or blob transfer failed. Retried by the copier up to its attempt budget."""


class DigestError(ActionableError):
    """The digest of a copied manifest could not be computed or accepted. Never retried."""


class CopyCancelledError(ActionableError):
    """The copy was cancelled or ran past its deadline."""


def create_missing_registry_error(role: str, image_set: str) -> ConfigurationError:
    """Create actionable error for a local image with no registry to copy from or to"""
    return ConfigurationError(
        message=f"copy {role} registry not found but {image_set} has internal images",
        category=ErrorCategory.CONFIGURATION,
        suggestions=[
            f"Set the {role} registry hostname annotation on the image stream",
            "Check that the migration controller stamped the registry annotations before backup",
            "Use the disable-image-copy annotation to skip relocation for this resource",
        ],
        details={"role": role, "image_set": image_set},
    )


def create_missing_annotation_error(annotation: str, image_set: str) -> ConfigurationError:
    """Create actionable error for a required annotation that is absent"""
    return ConfigurationError(
        message=f"migration registry not found for annotation \"{annotation}\"",
        category=ErrorCategory.CONFIGURATION,
        suggestions=[
            f"Add the '{annotation}' annotation to {image_set}",
            "Verify the migration registry is deployed for this backup storage location",
        ],
        details={"annotation": annotation, "image_set": image_set},
    )


def create_unknown_transport_error(key: str) -> ConfigurationError:
    """Create actionable error for a virtual route with no matching transport"""
    return ConfigurationError(
        message=f"no virtual transport configured for backup storage location '{key}'",
        category=ErrorCategory.CONFIGURATION,
        suggestions=[
            f"Add '{key}' under virtual_transport.locations in config.yaml",
            "Set IMAGECOPY_VIRTUAL_TRANSPORT_ENABLED=true if object-storage routing is intended",
        ],
        details={"location": key},
    )


def create_missing_token_error(error: Optional[Exception] = None) -> ConfigurationError:
    """Create actionable error for an internal registry context without a bearer token"""
    details = {}
    if error is not None:
        details = {"error_type": type(error).__name__, "error_message": str(error)}
    return ConfigurationError(
        message="BearerToken not found, can't authenticate with registry",
        category=ErrorCategory.AUTHENTICATION,
        suggestions=[
            "Run inside the cluster with a mounted service account token",
            "Verify the service account has permission to pull and push images",
        ],
        details=details,
    )


def create_locator_error(reference: str, reason: str) -> LocatorError:
    """Create actionable error for a malformed image reference"""
    return LocatorError(
        message=f"Invalid image locator {reference}: {reason}",
        category=ErrorCategory.LOCATOR,
        suggestions=[
            "Expected format: transport://registry/namespace/repository[:tag|@digest]",
            "Check the dockerImageReference values in the image stream status",
        ],
        details={"reference": reference, "reason": reason},
    )


def create_copy_error(source: str, destination: str, error: Exception, stderr: str = "") -> CopyError:
    """Create actionable error for a failed image transfer"""
    error_str = f"{error} {stderr}".lower()

    suggestions = [
        "Check network connectivity to both registries",
        "Verify the source image still exists",
        "Check the destination registry has free storage",
    ]

    if "blob unknown to registry" in error_str:
        suggestions.insert(0, "The destination registry lost a blob mid-push; retrying usually succeeds")

    if "timeout" in error_str or "timed out" in error_str:
        suggestions.insert(0, "Increase copy.timeout in config.yaml")

    if "unauthorized" in error_str or "401" in error_str or "403" in error_str:
        suggestions.insert(0, "Verify the service account token can access the registry")

    details = {
        "source": source,
        "destination": destination,
        "error_type": type(error).__name__,
        "error_message": str(error),
    }
    if stderr:
        details["stderr"] = stderr.strip()

    return CopyError(
        message=f"Failed to copy image from {source} to {destination}",
        category=ErrorCategory.TRANSFER,
        suggestions=suggestions,
        details=details,
    )


def create_digest_error(reason: str, reference: str = "") -> DigestError:
    """Create actionable error for manifest digest failures"""
    return DigestError(
        message=f"Error computing image digest for manifest: {reason}",
        category=ErrorCategory.DIGEST,
        suggestions=[
            "Check that the registry returned a schema2 or OCI manifest",
            "Re-run the backup once the source image is re-pushed",
        ],
        details={"reference": reference, "reason": reason},
    )


def create_cancelled_error(source: str, attempt: int) -> CopyCancelledError:
    """Create actionable error for a copy stopped by cancellation or deadline"""
    return CopyCancelledError(
        message=f"Copy of {source} cancelled before attempt {attempt}",
        category=ErrorCategory.CANCELLED,
        suggestions=["Raise the copy deadline if the registry is slow but healthy"],
        details={"source": source, "attempt": attempt},
    )


def create_config_error(field: str, value: Any, reason: str) -> ConfigurationError:
    """Create actionable error for configuration validation failures"""
    suggestions = [
        f"Check the '{field}' value in config.yaml",
        "Verify the value matches the expected format",
    ]

    if "timeout" in field.lower() or "step" in field.lower():
        suggestions.insert(1, "Time values must be positive numbers")

    return ConfigurationError(
        message=f"Configuration error: Invalid value for '{field}'",
        category=ErrorCategory.CONFIGURATION,
        suggestions=suggestions,
        details={
            "field": field,
            "value": value,
            "reason": reason
        }
    )
