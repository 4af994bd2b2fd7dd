"""Error taxonomy for template loading, validation, rendering and PDF conversion."""

from typing import Any, Dict, List, Optional, Sequence, Tuple


class ReportEngineError(Exception):
    """Base class. `details` carries structured data for API responses and logs."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": type(self).__name__, "message": self.message, **self.details}


class TemplateNotFound(ReportEngineError):
    def __init__(self, template_key: str, reason: str = ""):
        message = f"Template not found: {template_key}"
        if reason:
            message = f"{message} - {reason}"
        super().__init__(message, {"template_key": template_key})
        self.template_key = template_key


class StructuralDefect(ReportEngineError):
    """Malformed section nesting. The template must be fixed; no per-report recovery."""

    def __init__(self, errors: Sequence[str]):
        super().__init__("Malformed section blocks", {"errors": list(errors)})
        self.errors = list(errors)


class PlaceholderMismatch(ReportEngineError):
    def __init__(self, missing: Sequence[str], unused: Sequence[str]):
        errors = []
        if missing:
            errors.append(f"Placeholders in template but missing in data: {', '.join(missing)}")
        if unused:
            errors.append(f"Keys in data but not used in template: {', '.join(unused)}")
        super().__init__(
            "Placeholder validation failed",
            {"missing_in_data": list(missing), "unused_in_data": list(unused), "errors": errors},
        )
        self.missing = list(missing)
        self.unused = list(unused)


class MissingValueAtRender(ReportEngineError):
    def __init__(self, placeholder: str):
        super().__init__(f"Missing value for placeholder: {placeholder}", {"placeholder": placeholder})
        self.placeholder = placeholder


class ConversionFailure(ReportEngineError):
    """A single PDF tier failed. Absorbed by the fallback orchestrator."""

    def __init__(self, tier: str, message: str):
        super().__init__(f"{tier} conversion failed: {message}", {"tier": tier})
        self.tier = tier


class StorageError(ReportEngineError):
    def __init__(self, key: str, message: str):
        super().__init__(f"Storage operation failed for {key}: {message}", {"key": key})
        self.key = key


class AllTiersExhausted(ReportEngineError):
    def __init__(self, failures: List[Tuple[str, str]]):
        super().__init__(
            "All PDF rendering tiers failed",
            {"failures": [{"tier": tier, "error": error} for tier, error in failures]},
        )
        self.failures = list(failures)
