from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from checklist_templates.models import ChecklistTemplate

logger = logging.getLogger(__name__)

SEVERITIES: tuple[str, ...] = ("low", "medium", "high", "critical")

_LOG_PREVIEW_CHARS = 100


@dataclass(frozen=True)
class CommandPattern:
    pattern: re.Pattern[str]
    severity: str
    reason: str
    category: str
    suggestion: str = ""

    def matches(self, command: str) -> bool:
        return self.pattern.search(command) is not None


@dataclass(frozen=True)
class DangerousCommand:
    step_id: str
    command_id: str
    pattern: str
    severity: str
    reason: str
    category: str
    suggestion: str = ""


def _p(regex: str, severity: str, reason: str, category: str, suggestion: str) -> CommandPattern:
    return CommandPattern(
        pattern=re.compile(regex),
        severity=severity,
        reason=reason,
        category=category,
        suggestion=suggestion,
    )


DEFAULT_PATTERNS: tuple[CommandPattern, ...] = (
    _p(
        r"\brm\s+-[a-zA-Z]*[rR][a-zA-Z]*\s+/(\s|$|\*)",
        "critical",
        "Recursive deletion from root directory",
        "destructive",
        "Use specific paths instead of the root directory",
    ),
    _p(
        r"\b(rm|rmdir|del|shred)\b",
        "high",
        "File deletion command detected",
        "destructive",
        "Verify the deletion target before executing",
    ),
    _p(
        r"\bmkfs(\.\w+)?\b|\bformat\s+[a-zA-Z]:|\bdd\s+if=",
        "critical",
        "Filesystem format or raw disk write detected",
        "destructive",
        "Never format filesystems or write raw devices from templates",
    ),
    _p(
        r"\b(sudo|su|runas|doas)\b",
        "critical",
        "Privilege escalation command detected",
        "privilege",
        "Templates should not require elevated privileges",
    ),
    _p(
        r"\b(chmod|chown|chgrp|icacls|takeown)\b",
        "medium",
        "Permission modification command detected",
        "permissions",
        "Verify permission changes are necessary",
    ),
    _p(
        r"\b(kill|killall|taskkill|pkill)\b",
        "medium",
        "Process termination command detected",
        "process",
        "Target exact process IDs instead of patterns",
    ),
    _p(
        r"\b(curl|wget)\b.*\|\s*(bash|sh|zsh)\b",
        "critical",
        "Pipe to shell from network detected",
        "network",
        "Never pipe network content directly to a shell",
    ),
    _p(
        r"\b(curl|wget|nc|netcat|telnet|ssh|scp|ftp)\b",
        "high",
        "Network access command detected",
        "network",
        "Templates should not access the network",
    ),
    _p(
        r"\b(eval|exec)\b",
        "critical",
        "Code evaluation command detected",
        "evaluation",
        "Never use eval or exec",
    ),
    _p(
        r"(^|[\s;&|])(source|\.)\s+\S",
        "medium",
        "Script sourcing detected",
        "evaluation",
        "Verify the sourced script content",
    ),
    _p(
        r"&&|\|\||;",
        "low",
        "Command chaining detected",
        "chaining",
        "Split into separate commands",
    ),
    _p(
        r"\$\(|`",
        "medium",
        "Command substitution detected",
        "substitution",
        "Use variables instead of command substitution",
    ),
    _p(
        r">>?|<|&>",
        "low",
        "Redirection operator detected",
        "redirection",
        "Verify the redirection is necessary",
    ),
)


class DangerousCommandDetector:
    def __init__(
        self,
        *,
        enabled: bool = True,
        custom_patterns: Iterable[CommandPattern] = (),
    ) -> None:
        self.enabled = enabled
        self._patterns: tuple[CommandPattern, ...] = DEFAULT_PATTERNS + tuple(custom_patterns)
        logger.debug(
            "DangerousCommandDetector initialized (enabled=%s patterns=%d)",
            enabled,
            len(self._patterns),
        )

    @property
    def patterns(self) -> tuple[CommandPattern, ...]:
        return self._patterns

    def scan_command(
        self, command: str, command_id: str, *, step_id: str = ""
    ) -> list[DangerousCommand]:
        if not self.enabled:
            return []
        return [
            DangerousCommand(
                step_id=step_id,
                command_id=command_id,
                pattern=p.pattern.pattern,
                severity=p.severity,
                reason=p.reason,
                category=p.category,
                suggestion=p.suggestion,
            )
            for p in self._patterns
            if p.matches(command)
        ]

    def scan_template(self, template: ChecklistTemplate) -> list[DangerousCommand]:
        if not self.enabled:
            return []
        found: list[DangerousCommand] = []
        for step in template.steps:
            for command in step.commands:
                found.extend(self.scan_command(command.content, command.id, step_id=step.id))
        logger.info(
            "Template scan complete: %s dangerous=%d", template.id or "<unnamed>", len(found)
        )
        return found

    def is_dangerous(self, command: str, *, min_severity: str = "high") -> bool:
        threshold = SEVERITIES.index(min_severity)
        return any(
            SEVERITIES.index(p.severity) >= threshold
            for p in self._patterns
            if p.matches(command)
        )

    def categories(self) -> list[str]:
        return list(dict.fromkeys(p.category for p in self._patterns))

    def patterns_by_category(self, category: str) -> list[CommandPattern]:
        return [p for p in self._patterns if p.category == category]

    def patterns_by_severity(self, severity: str) -> list[CommandPattern]:
        return [p for p in self._patterns if p.severity == severity]


@dataclass(frozen=True)
class InjectionDetection:
    detected: bool
    patterns: tuple[str, ...]


_DANGEROUS_CHARACTERS = frozenset(";|&$`(){}[]<>\\\n\r")
_STRICT_DISALLOWED = re.compile(r"[^a-zA-Z0-9\s._\-]")
_CHAINING = ("&&", "||", ";", "|")
_REDIRECTION = (">>", ">", "<", "2>&1", "&>")
_SUBSTITUTION = (re.compile(r"\$\("), re.compile(r"`"), re.compile(r"\$\{"))


class CommandInjectionPreventer:
    def __init__(
        self,
        *,
        enable_sanitization: bool = True,
        enable_detection: bool = True,
        strict_mode: bool = False,
    ) -> None:
        self.enable_sanitization = enable_sanitization
        self.enable_detection = enable_detection
        self.strict_mode = strict_mode

    def sanitize_variable(self, value: str) -> str:
        if not self.enable_sanitization:
            return value
        sanitized = "".join(ch for ch in value if ch not in _DANGEROUS_CHARACTERS)
        if self.strict_mode:
            sanitized = _STRICT_DISALLOWED.sub("", sanitized)
        if sanitized != value:
            logger.debug("Variable sanitized: removed %d characters", len(value) - len(sanitized))
        return sanitized

    def detect_command_chaining(self, command: str) -> bool:
        return self._detect_literal(command, _CHAINING, "Command chaining")

    def detect_redirection(self, command: str) -> bool:
        return self._detect_literal(command, _REDIRECTION, "Redirection operator")

    def detect_process_substitution(self, command: str) -> bool:
        if not self.enable_detection:
            return False
        for pattern in _SUBSTITUTION:
            if pattern.search(command):
                logger.warning(
                    "Process substitution detected (%s): %s",
                    pattern.pattern,
                    command[:_LOG_PREVIEW_CHARS],
                )
                return True
        return False

    def _detect_literal(self, command: str, needles: tuple[str, ...], label: str) -> bool:
        if not self.enable_detection:
            return False
        for needle in needles:
            if needle in command:
                logger.warning(
                    "%s detected (%s): %s", label, needle, command[:_LOG_PREVIEW_CHARS]
                )
                return True
        return False

    def detect_injection(self, command: str) -> InjectionDetection:
        found: list[str] = []
        if self.detect_command_chaining(command):
            found.append("Command chaining")
        if self.detect_redirection(command):
            found.append("Redirection")
        if self.detect_process_substitution(command):
            found.append("Process substitution")
        return InjectionDetection(detected=bool(found), patterns=tuple(found))

    def safe_interpolate(self, template: str, variables: Mapping[str, str]) -> str:
        result = template
        for key, value in variables.items():
            result = result.replace("${" + key + "}", self.sanitize_variable(str(value)))
        return result

    def validate_command(self, command: str) -> InjectionDetection:
        detection = self.detect_injection(command)
        if detection.detected:
            logger.error(
                "Command injection attempt detected (%s): %s",
                ", ".join(detection.patterns),
                command[:_LOG_PREVIEW_CHARS],
            )
        return detection

    def process_command(
        self, template: str, variables: Mapping[str, str]
    ) -> tuple[str, InjectionDetection]:
        command = self.safe_interpolate(template, variables)
        return command, self.validate_command(command)
