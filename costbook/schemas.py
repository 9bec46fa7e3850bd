from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional
from datetime import date, datetime


class CamelModel(BaseModel):
    """Request/response models speak camelCase JSON, snake_case Python."""
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# --- Templates ---

class ComponentBase(CamelModel):
    type: str
    ref_key: str = Field(min_length=1)
    qty_formula: str = Field(min_length=1)
    mandatory: bool = True
    risk_factor: float = Field(default=1.0, ge=0)
    sort: int = 0
    note: Optional[str] = None

class ComponentCreate(ComponentBase):
    pass

class Component(ComponentBase):
    id: int

class TemplateBase(CamelModel):
    key: str = Field(min_length=1)
    title: str = ""
    category: str = ""
    unit: str = Field(min_length=1)
    description: Optional[str] = None
    default_params: Dict[str, Any] = {}
    axes: Dict[str, List[Any]] = {}
    tags: List[str] = []

class TemplateUpsert(TemplateBase):
    # None keeps the stored components; a list (even empty) replaces them all
    components: Optional[List[ComponentCreate]] = None

class Template(TemplateBase):
    id: int
    generation: int
    created_at: datetime
    updated_at: datetime
    components: List[Component] = []


# --- Variants ---

class Variant(CamelModel):
    key: str
    unit: Optional[str] = None
    params: Dict[str, Any] = {}
    label: Optional[str] = None
    enabled: bool = True
    generation: int = 0
    changed_keys: List[str] = []
    is_default: bool = False
    virtual: bool = False

class RegenerateRequest(CamelModel):
    strategy: str = "axes"  # axes | smart
    limit: Optional[int] = Field(default=None, gt=0)

class RegenerateResult(CamelModel):
    template_key: str
    strategy: str
    generation: int
    count: int
    keys: List[str] = []

class SuggestRequest(CamelModel):
    context: Dict[str, Any] = {}
    take: int = Field(default=5, ge=0, le=50)


# --- Calculation ---

class CalcRequest(CamelModel):
    template_key: str
    qty: float
    params: Dict[str, Any] = {}
    variant_key: Optional[str] = None
    include_disabled: bool = False
    pricing_date: Optional[date] = None

class CalcSuggestRequest(CamelModel):
    template_key: str
    qty: float
    context: Dict[str, Any] = {}
    take: int = Field(default=5, ge=0, le=50)
    pricing_date: Optional[date] = None

class FormulaRequest(CamelModel):
    formula: str
    params: Dict[str, Any] = {}
    # Reject inf/nan results instead of returning them
    strict: bool = False


# --- Prices ---

class PriceItemBase(CamelModel):
    title: Optional[str] = None
    type: Optional[str] = None
    unit: Optional[str] = None
    price: float = Field(ge=0)
    valid_from: Optional[date] = None
    valid_to: Optional[date] = None
    note: Optional[str] = None

class PriceItemUpdate(PriceItemBase):
    pass

class PriceItem(PriceItemBase):
    id: int
    ref_key: str
    updated_at: Optional[datetime] = None
