from checklist_templates.ast_validator import ASTValidator
from checklist_templates.cache import CachedTemplate, CacheStatistics, TemplateCache
from checklist_templates.errors import (
    MemoryLimitError,
    NestingDepthExceededError,
    NetworkAccessError,
    ResourceLimitError,
    SandboxViolationError,
    TemplateCacheError,
    TemplateError,
    TemplateInheritanceError,
    TemplateLoadError,
    TemplateTimeoutError,
    TemplateValidationError,
    get_recovery_suggestion,
    is_template_error,
)
from checklist_templates.inheritance import TemplateInheritance, merge_templates
from checklist_templates.loader import TemplateInfo, TemplateLoader
from checklist_templates.models import (
    ChecklistTemplate,
    Command,
    Step,
    TemplateMetadata,
    TemplateVariable,
    template_from_dict,
)
from checklist_templates.resource_limiter import ResourceLimiter, ResourceLimits, ResourceUsage
from checklist_templates.sandbox import SandboxContext, TemplateSandbox
from checklist_templates.schema import load_template_schema, validate_against_schema
from checklist_templates.security import (
    CommandInjectionPreventer,
    CommandPattern,
    DangerousCommand,
    DangerousCommandDetector,
    InjectionDetection,
)
from checklist_templates.substitutor import (
    Preview,
    SubstitutionConfig,
    SubstitutionPreview,
    SubstitutionResult,
    VariableSubstitutor,
    extract_variables,
)
from checklist_templates.validator import TemplateValidator, ValidationResult
from checklist_templates.variables import VariableStore, VariableStoreError

__all__ = [
    "ASTValidator",
    "CacheStatistics",
    "CachedTemplate",
    "ChecklistTemplate",
    "Command",
    "CommandInjectionPreventer",
    "CommandPattern",
    "DangerousCommand",
    "DangerousCommandDetector",
    "InjectionDetection",
    "MemoryLimitError",
    "NestingDepthExceededError",
    "NetworkAccessError",
    "Preview",
    "ResourceLimitError",
    "ResourceLimiter",
    "ResourceLimits",
    "ResourceUsage",
    "SandboxContext",
    "SandboxViolationError",
    "Step",
    "SubstitutionConfig",
    "SubstitutionPreview",
    "SubstitutionResult",
    "TemplateCache",
    "TemplateCacheError",
    "TemplateError",
    "TemplateInfo",
    "TemplateInheritance",
    "TemplateInheritanceError",
    "TemplateLoadError",
    "TemplateLoader",
    "TemplateMetadata",
    "TemplateSandbox",
    "TemplateTimeoutError",
    "TemplateValidationError",
    "TemplateValidator",
    "TemplateVariable",
    "ValidationResult",
    "VariableStore",
    "VariableStoreError",
    "VariableSubstitutor",
    "extract_variables",
    "get_recovery_suggestion",
    "is_template_error",
    "load_template_schema",
    "merge_templates",
    "template_from_dict",
    "validate_against_schema",
]
