# Environment - Security Policy Validator
#
# Checks that the host is fit for the credential stores before the
# application starts using them: required and forbidden variables,
# secret-looking variables, transport policy per environment, keychain
# platform support, interpreter version/flags and TLS verification.
#
# Checks run against an EnvironmentSnapshot captured once per call and
# never read process state directly.

import os
import re
import shutil
import sys
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Tuple

from .core.constants import SECURITY_COMMAND, SUPPORTED_PLATFORM, SecurityErrorCode

ENVIRONMENT_VARIABLE = "PULSE_ENV"

REQUIRED_ENV_VARS: Tuple[str, ...] = ("PULSE_ENV", "PULSE_OWNER_EMAIL")

# Values that must come from the credential stores instead
FORBIDDEN_ENV_VARS: Tuple[str, ...] = (
    "NOTION_API_TOKEN",
    "PLAID_CLIENT_SECRET",
    "PLAID_SECRET",
    "API_KEY",
    "SECRET_KEY",
    "PASSWORD",
)

SECRET_KEYWORDS: Tuple[str, ...] = (
    "key", "secret", "token", "password", "pass", "auth",
    "credential", "api", "private", "cert", "signature",
)

_TOKEN_SHAPE_RE = re.compile(r'^[A-Za-z0-9+/=_-]+$')
SECRET_VALUE_MIN_LENGTH = 20

MINIMUM_PYTHON = (3, 11)

# Interpreter flags that weaken runtime guarantees
INSECURE_RUNTIME_FLAGS: Tuple[str, ...] = ("-i", "-O", "-OO")

# (variable, value) pairs meaning certificate verification is off
TLS_DISABLED_INDICATORS: Tuple[Tuple[str, str], ...] = (
    ("PYTHONHTTPSVERIFY", "0"),
    ("NODE_TLS_REJECT_UNAUTHORIZED", "0"),
)

TRUSTED_DIRECTORY_MARKERS: Tuple[str, ...] = ("/Users/", "/Applications/")


@dataclass(frozen=True)
class EnvironmentProfile:
    """Policy for one deployment environment."""

    allow_plaintext_secrets: bool
    require_https: bool
    enable_debug_logging: bool
    skip_certificate_validation: bool


DEVELOPMENT_PROFILE = EnvironmentProfile(
    allow_plaintext_secrets=False,
    require_https=False,
    enable_debug_logging=True,
    skip_certificate_validation=False,
)

PRODUCTION_PROFILE = EnvironmentProfile(
    allow_plaintext_secrets=False,
    require_https=True,
    enable_debug_logging=False,
    skip_certificate_validation=False,
)


def _current_runtime_flags() -> Tuple[str, ...]:
    flags = []
    if sys.flags.inspect:
        flags.append("-i")
    if sys.flags.optimize == 1:
        flags.append("-O")
    elif sys.flags.optimize >= 2:
        flags.append("-OO")
    return tuple(flags)


@dataclass(frozen=True)
class EnvironmentSnapshot:
    """Everything validation looks at, captured at one point in time."""

    variables: Mapping[str, str]
    platform: str
    python_version: Tuple[int, int, int]
    runtime_flags: Tuple[str, ...] = ()
    cwd: str = ""
    security_command_available: bool = False

    @classmethod
    def capture(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        command: str = SECURITY_COMMAND,
    ) -> "EnvironmentSnapshot":
        try:
            cwd = os.getcwd()
        except OSError:
            cwd = ""
        return cls(
            variables=dict(os.environ if environ is None else environ),
            platform=sys.platform,
            python_version=tuple(sys.version_info[:3]),
            runtime_flags=_current_runtime_flags(),
            cwd=cwd,
            security_command_available=shutil.which(command) is not None,
        )


@dataclass
class ValidationIssue:
    code: SecurityErrorCode
    message: str
    severity: str = "error"


@dataclass
class EnvironmentValidationResult:
    is_valid: bool
    environment: str
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def has_error(self, code: SecurityErrorCode) -> bool:
        return any(e.code == code for e in self.errors)

    def error_messages(self) -> List[str]:
        return [f"{e.code.value}: {e.message}" for e in self.errors]


@dataclass
class SecurityRequirement:
    name: str
    required: bool
    met: bool
    description: str


class EnvironmentValidator:
    """
    Validates a runtime environment against the security policy.

    Args:
        required_vars: Variables that must be set
        forbidden_vars: Variables that must not be set
        profiles: Policy per environment name ("production" or anything else)
    """

    def __init__(
        self,
        required_vars: Tuple[str, ...] = REQUIRED_ENV_VARS,
        forbidden_vars: Tuple[str, ...] = FORBIDDEN_ENV_VARS,
        profiles: Optional[Dict[str, EnvironmentProfile]] = None,
    ):
        self.required_vars = required_vars
        self.forbidden_vars = forbidden_vars
        self.profiles = profiles or {
            "production": PRODUCTION_PROFILE,
            "development": DEVELOPMENT_PROFILE,
        }

    def validate(self, snapshot: Optional[EnvironmentSnapshot] = None) -> EnvironmentValidationResult:
        """Run every check. Warnings never affect validity."""
        snapshot = snapshot or EnvironmentSnapshot.capture()
        result = EnvironmentValidationResult(
            is_valid=True,
            environment=self.detect_environment(snapshot),
        )

        self._validate_required_variables(snapshot, result)
        self._validate_forbidden_variables(snapshot, result)
        self._validate_environment_policy(snapshot, result)
        self._validate_platform(snapshot, result)
        self._validate_runtime(snapshot, result)
        self._validate_working_directory(snapshot, result)

        result.is_valid = not result.errors
        return result

    @staticmethod
    def detect_environment(snapshot: EnvironmentSnapshot) -> str:
        value = (snapshot.variables.get(ENVIRONMENT_VARIABLE) or "").lower()
        if value in ("production", "test"):
            return value
        return "development"

    # ------------------------------------------------------------------
    # Checks

    def _validate_required_variables(self, snapshot, result):
        for name in self.required_vars:
            if not snapshot.variables.get(name):
                result.errors.append(ValidationIssue(
                    SecurityErrorCode.MISSING_REQUIREMENTS,
                    f"Required environment variable '{name}' is not set",
                ))

    def _validate_forbidden_variables(self, snapshot, result):
        for name in self.forbidden_vars:
            if snapshot.variables.get(name):
                result.errors.append(ValidationIssue(
                    SecurityErrorCode.POLICY_VIOLATION,
                    f"Forbidden environment variable '{name}' detected. Use keychain instead.",
                ))

        for name, value in snapshot.variables.items():
            if self.looks_like_secret(name, value):
                result.warnings.append(
                    f"Environment variable '{name}' appears to contain sensitive data. "
                    "Consider using keychain."
                )

    def _validate_environment_policy(self, snapshot, result):
        profile = self._profile_for(result.environment)

        if profile.require_https and not self.is_https_enabled(snapshot):
            result.errors.append(ValidationIssue(
                SecurityErrorCode.INSECURE_ENVIRONMENT,
                "HTTPS is required in this environment",
            ))

        if not profile.enable_debug_logging and self.is_debug_logging_enabled(snapshot):
            result.warnings.append("Debug logging is enabled. Ensure no sensitive data is logged.")

        if profile.skip_certificate_validation:
            result.warnings.append("Certificate validation is disabled. Only use in development.")

    def _validate_platform(self, snapshot, result):
        if snapshot.platform != SUPPORTED_PLATFORM:
            result.errors.append(ValidationIssue(
                SecurityErrorCode.MISSING_REQUIREMENTS,
                "Pulse requires macOS for Keychain integration",
            ))
            return

        if not snapshot.security_command_available:
            result.errors.append(ValidationIssue(
                SecurityErrorCode.MISSING_REQUIREMENTS,
                "macOS security command is not available",
            ))

    def _validate_runtime(self, snapshot, result):
        if tuple(snapshot.python_version[:2]) < MINIMUM_PYTHON:
            version = ".".join(str(part) for part in snapshot.python_version)
            result.warnings.append(
                f"Python {version} is outdated. Consider upgrading for security updates."
            )

        for flag in INSECURE_RUNTIME_FLAGS:
            if flag in snapshot.runtime_flags:
                result.warnings.append(f"Insecure interpreter flag detected: {flag}")

        if self.is_tls_verification_disabled(snapshot):
            result.errors.append(ValidationIssue(
                SecurityErrorCode.INSECURE_ENVIRONMENT,
                "TLS certificate validation is disabled",
            ))

    def _validate_working_directory(self, snapshot, result):
        # Heuristic only
        if not snapshot.cwd:
            result.warnings.append("Unable to validate file system permissions")
        elif not any(marker in snapshot.cwd for marker in TRUSTED_DIRECTORY_MARKERS):
            result.warnings.append("Running from unexpected directory. Ensure proper file permissions.")

    # ------------------------------------------------------------------
    # Predicates

    def _profile_for(self, environment: str) -> EnvironmentProfile:
        if environment == "production":
            return self.profiles["production"]
        return self.profiles["development"]

    @staticmethod
    def looks_like_secret(name: str, value: Optional[str]) -> bool:
        """Secret keyword in the name and a long, token-shaped value."""
        if not value:
            return False
        lower_name = name.lower()
        has_keyword = any(keyword in lower_name for keyword in SECRET_KEYWORDS)
        looks_like_token = (
            len(value) > SECRET_VALUE_MIN_LENGTH and bool(_TOKEN_SHAPE_RE.match(value))
        )
        return has_keyword and looks_like_token

    @staticmethod
    def is_https_enabled(snapshot: EnvironmentSnapshot) -> bool:
        env = snapshot.variables
        return bool(
            env.get("HTTPS") == "true"
            or env.get("SSL_CERT")
            or env.get("TLS_CERT")
            or env.get("FORCE_HTTPS") == "true"
        )

    @staticmethod
    def is_debug_logging_enabled(snapshot: EnvironmentSnapshot) -> bool:
        env = snapshot.variables
        return bool(
            env.get("DEBUG")
            or env.get("VERBOSE") == "true"
            or env.get("LOG_LEVEL") == "debug"
        )

    @staticmethod
    def is_tls_verification_disabled(snapshot: EnvironmentSnapshot) -> bool:
        return any(
            snapshot.variables.get(name) == value
            for name, value in TLS_DISABLED_INDICATORS
        )

    # ------------------------------------------------------------------
    # Presentation

    def get_security_requirements(
        self, snapshot: Optional[EnvironmentSnapshot] = None
    ) -> List[SecurityRequirement]:
        """Checklist view of the same checks validate() runs."""
        snapshot = snapshot or EnvironmentSnapshot.capture()
        validation = self.validate(snapshot)
        is_macos = snapshot.platform == SUPPORTED_PLATFORM

        return [
            SecurityRequirement(
                name="macOS Platform",
                required=True,
                met=is_macos,
                description="Required for Keychain integration",
            ),
            SecurityRequirement(
                name="Required Environment Variables",
                required=True,
                met=not any(
                    not snapshot.variables.get(name) for name in self.required_vars
                ),
                description="All required environment variables are set",
            ),
            SecurityRequirement(
                name="No Forbidden Environment Variables",
                required=True,
                met=not validation.has_error(SecurityErrorCode.POLICY_VIOLATION),
                description="No credentials in environment variables",
            ),
            SecurityRequirement(
                name="Secure Transport",
                required=validation.environment == "production",
                met=validation.environment != "production" or self.is_https_enabled(snapshot),
                description="HTTPS enabled for production",
            ),
            SecurityRequirement(
                name="TLS Certificate Validation",
                required=True,
                met=not self.is_tls_verification_disabled(snapshot),
                description="TLS certificates are validated",
            ),
            SecurityRequirement(
                name="Security Command Available",
                required=True,
                met=is_macos and snapshot.security_command_available,
                description="macOS security command is accessible",
            ),
        ]

    def generate_security_report(self, snapshot: Optional[EnvironmentSnapshot] = None) -> str:
        """Markdown report of validation results and the requirement checklist."""
        snapshot = snapshot or EnvironmentSnapshot.capture()
        validation = self.validate(snapshot)
        requirements = self.get_security_requirements(snapshot)

        lines = [
            "# Pulse Security Validation Report",
            "",
            f"Environment: {validation.environment}",
            f"Overall Status: {'✅ PASS' if validation.is_valid else '❌ FAIL'}",
            "",
        ]

        if validation.errors:
            lines.append("## ❌ Errors")
            for error in validation.errors:
                lines.append(f"- **{error.code.value}**: {error.message}")
            lines.append("")

        if validation.warnings:
            lines.append("## ⚠️ Warnings")
            for warning in validation.warnings:
                lines.append(f"- {warning}")
            lines.append("")

        lines.append("## Security Requirements")
        for req in requirements:
            status = "✅" if req.met else "❌"
            required = "(Required)" if req.required else "(Optional)"
            lines.append(f"- {status} **{req.name}** {required}: {req.description}")

        return "\n".join(lines) + "\n"
