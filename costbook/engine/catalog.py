"""
Template catalog model: immutable snapshots the engine works on.

The engine never reads the database. Callers load a Template (and,
optionally, a Variant) and pass them in explicitly; CatalogSnapshot bundles
several templates for batch work such as regeneration.
"""

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .errors import TemplateNotFound, VariantNotFound
from .params import strip_meta


class ComponentType(str, enum.Enum):
    LABOR = "labor"
    MACHINE = "machine"
    MATERIAL = "material"
    DISPOSAL = "disposal"
    SURFACE = "surface"
    OTHER = "other"

    @classmethod
    def parse(cls, value) -> "ComponentType":
        """Accept enum members and case-insensitive names ("LABOR", "labor")."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(
                f"Unknown component type: {value!r}. "
                f"Available: {[t.value for t in cls]}"
            ) from None


COMPONENT_TYPE_ORDER = list(ComponentType)


@dataclass(frozen=True)
class Component:
    type: ComponentType
    ref_key: str
    qty_formula: str
    mandatory: bool = True
    risk_factor: float = 1.0
    sort: int = 0
    note: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "type", ComponentType.parse(self.type))
        if not self.ref_key:
            raise ValueError("Component refKey must not be empty")
        if not self.qty_formula or not str(self.qty_formula).strip():
            raise ValueError(f"Component {self.ref_key} has an empty qtyFormula")
        if self.risk_factor is None or self.risk_factor < 0:
            raise ValueError(f"Component {self.ref_key} riskFactor must be >= 0")


@dataclass(frozen=True)
class Template:
    key: str
    unit: str
    category: str = ""
    title: str = ""
    default_params: Mapping[str, Any] = field(default_factory=dict)
    components: Tuple[Component, ...] = ()
    axes: Mapping[str, Sequence[Any]] = field(default_factory=dict)
    description: Optional[str] = None
    tags: Tuple[str, ...] = ()

    def __post_init__(self):
        if not self.key or "|" in self.key:
            raise ValueError(f"Invalid template key: {self.key!r}")
        object.__setattr__(self, "components", tuple(self.components))
        object.__setattr__(self, "tags", tuple(self.tags))

    @property
    def defaults(self) -> Dict[str, Any]:
        """Default parameters without metadata keys."""
        return strip_meta(self.default_params)

    def sorted_components(self) -> List[Component]:
        """Components by sort order; ties keep declaration order."""
        return sorted(self.components, key=lambda c: c.sort)


@dataclass(frozen=True)
class Variant:
    key: str
    template_key: str
    params: Mapping[str, Any]
    unit: Optional[str] = None
    enabled: bool = True
    generation: int = 0

    def unit_for(self, template: Template) -> str:
        return self.unit or template.unit


@dataclass
class CatalogSnapshot:
    """A consistent read of templates and their stored variants."""
    templates: Dict[str, Template] = field(default_factory=dict)
    variants: Dict[str, List[Variant]] = field(default_factory=dict)

    def add(self, template: Template, variants: Sequence[Variant] = ()) -> None:
        self.templates[template.key] = template
        self.variants[template.key] = list(variants)

    def get_template(self, key: str) -> Template:
        if key not in self.templates:
            raise TemplateNotFound(key)
        return self.templates[key]

    def get_variant(self, template_key: str, variant_key: str, include_disabled: bool = False) -> Variant:
        self.get_template(template_key)
        for variant in self.variants.get(template_key, []):
            if variant.key == variant_key and (include_disabled or variant.enabled):
                return variant
        raise VariantNotFound(template_key, variant_key)

    def list_variants(self, template_key: str, enabled_only: bool = True) -> List[Variant]:
        self.get_template(template_key)
        return [
            v for v in self.variants.get(template_key, [])
            if v.enabled or not enabled_only
        ]
