"""
Engine error taxonomy.

Formula errors are local to one component line and never abort a
calculation. Structural errors (missing template or variant) abort the
whole request. Every error carries a stable code for API responses.
"""

from typing import Any, Dict, Optional


class CostbookError(Exception):
    """Base exception with a stable error code and structured details."""

    code = "COSTBOOK_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# --- Formula errors (per line, non-fatal) ---

class FormulaError(CostbookError):
    code = "FORMULA_ERROR"


class FormulaSyntaxError(FormulaError):
    """Malformed formula text: bad character, misplaced comma, unbalanced parentheses."""
    code = "FORMULA_SYNTAX"


class UnknownIdentifierError(FormulaError):
    """Formula references a name that is neither bound nor a built-in constant."""
    code = "UNKNOWN_IDENTIFIER"

    def __init__(self, name: str):
        super().__init__(f"Unknown identifier: {name}", {"identifier": name})
        self.name = name


class ArityError(FormulaError):
    """Built-in function called with the wrong number of arguments."""
    code = "FUNCTION_ARITY"

    def __init__(self, function: str, expected: int, got: int):
        super().__init__(
            f"{function}() takes {expected} argument{'s' if expected != 1 else ''}, got {got}",
            {"function": function, "expected": expected, "got": got},
        )
        self.function = function
        self.expected = expected
        self.got = got


class NonFiniteResultError(FormulaError):
    """Raised only by callers that treat inf/nan results as fatal."""
    code = "NON_FINITE_RESULT"


# --- Pricing ---

class PriceNotFound(CostbookError):
    code = "MISSING_PRICE"

    def __init__(self, ref_key: str):
        super().__init__(f"No price for refKey: {ref_key}", {"ref_key": ref_key})
        self.ref_key = ref_key


# --- Structural (abort the whole request) ---

class StructuralNotFound(CostbookError):
    code = "NOT_FOUND"


class TemplateNotFound(StructuralNotFound):
    code = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_key: str):
        super().__init__(f"Template not found: {template_key}", {"template_key": template_key})
        self.template_key = template_key


class VariantNotFound(StructuralNotFound):
    code = "VARIANT_NOT_FOUND"

    def __init__(self, template_key: str, variant_key: str):
        super().__init__(
            f"Variant not found: {variant_key}",
            {"template_key": template_key, "variant_key": variant_key},
        )
        self.template_key = template_key
        self.variant_key = variant_key


# --- Variant generation ---

class VariantExplosionError(CostbookError):
    """Axis definition would produce an unbounded or oversized variant set."""
    code = "VARIANT_EXPLOSION"


class VariantKeyCollision(CostbookError):
    """Two distinct canonical parameter sets hashed to the same short key."""
    code = "VARIANT_KEY_COLLISION"
