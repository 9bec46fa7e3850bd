"""
Calculation engine.

Turns (template, selection, requested quantity, prices) into a priced,
reproducible breakdown:

  1. context = defaults ∪ variant params ∪ overrides ∪ quantity aliases
  2. each component's qtyFormula is evaluated in sort order
  3. the unit price is resolved by refKey
  4. extended cost = quantity × unit price × risk factor
  5. per-type subtotals and a grand total over finite costs

Per-component problems (bad formula, missing price, non-finite quantity)
become line statuses and never stop the sibling lines. Only a missing
template or variant aborts the calculation.
"""

import enum
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from ..config import settings
from .catalog import COMPONENT_TYPE_ORDER, Component, Template, Variant
from .errors import FormulaError, NonFiniteResultError, PriceNotFound, VariantNotFound
from .expression import compile_formula, referenced_identifiers
from .params import bind_aliases, merge_params, numeric_context
from .pricing import PriceLookup

logger = logging.getLogger(__name__)

QUANTITY_ALIASES = ("qty", "length", "area", "volume")

# Template unit -> the alias its formulas are expected to read
UNIT_ALIASES = {
    "m": "LENGTH",
    "lfm": "LENGTH",
    "m2": "AREA",
    "m²": "AREA",
    "qm": "AREA",
    "m3": "VOLUME",
    "m³": "VOLUME",
    "cbm": "VOLUME",
}

MONEY_DIGITS = 4
QTY_DIGITS = 6


class LineStatus(str, enum.Enum):
    OK = "ok"
    UNPRICED = "unpriced"
    FORMULA_ERROR = "formula_error"
    NON_FINITE = "non_finite"


def json_number(value: Optional[float], digits: int) -> Union[float, str, None]:
    """Round finite numbers; render inf/nan as strings so responses stay valid JSON."""
    if value is None:
        return None
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    rounded = round(value, digits)
    return rounded + 0.0  # -0.0 -> 0.0


@dataclass
class PricedLineItem:
    ref_key: str
    type: str
    sort: int
    qty_formula: str
    resolved_qty: Optional[float]
    unit: Optional[str]
    unit_price: Optional[float]
    risk_factor: float
    extended_cost: float
    mandatory: bool
    priced: bool
    status: LineStatus
    note: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def optional(self) -> bool:
        return not self.mandatory

    def to_dict(self) -> Dict[str, Any]:
        return {
            "refKey": self.ref_key,
            "type": self.type,
            "sort": self.sort,
            "note": self.note,
            "qtyFormula": self.qty_formula,
            "resolvedQty": json_number(self.resolved_qty, QTY_DIGITS),
            "unit": self.unit,
            "unitPrice": json_number(self.unit_price, MONEY_DIGITS),
            "riskFactor": json_number(self.risk_factor, MONEY_DIGITS),
            "extendedCost": json_number(self.extended_cost, MONEY_DIGITS),
            "mandatory": self.mandatory,
            "optional": self.optional,
            "priced": self.priced,
            "status": self.status.value,
            "error": self.error,
            "errorCode": self.error_code,
        }


@dataclass
class Breakdown:
    template: Dict[str, Any]
    variant: Optional[Dict[str, Any]]
    input: Dict[str, Any]
    params: Dict[str, Any]
    lines: List[PricedLineItem]
    totals_by_type: Dict[str, float]
    grand_total: float
    net_per_unit: Optional[float]
    currency: str
    missing_prices: List[str] = field(default_factory=list)
    formula_errors: List[Dict[str, Any]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "template": self.template,
            "variant": self.variant,
            "input": self.input,
            "params": self.params,
            "lines": [line.to_dict() for line in self.lines],
            "totalsByType": {
                k: json_number(v, MONEY_DIGITS) for k, v in self.totals_by_type.items()
            },
            "grandTotal": json_number(self.grand_total, MONEY_DIGITS),
            "netPerUnit": json_number(self.net_per_unit, MONEY_DIGITS),
            "currency": self.currency,
            "missingPrices": list(self.missing_prices),
            "formulaErrors": list(self.formula_errors),
            "warnings": list(self.warnings),
        }


@dataclass
class Selection:
    """Which parameter set to price: a stored variant, ad-hoc overrides, or both."""
    variant: Optional[Variant] = None
    overrides: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def of(cls, value: Union["Selection", Variant, Mapping[str, Any], None]) -> "Selection":
        if value is None:
            return cls()
        if isinstance(value, Selection):
            return value
        if isinstance(value, Variant):
            return cls(variant=value)
        if isinstance(value, Mapping):
            return cls(overrides=value)
        raise TypeError(f"Unsupported selection: {type(value).__name__}")


def check_quantity(requested_qty: Any) -> float:
    if isinstance(requested_qty, bool) or not isinstance(requested_qty, (int, float)):
        raise ValueError(f"Quantity must be a number, got {requested_qty!r}")
    if not math.isfinite(requested_qty):
        raise ValueError(f"Quantity must be finite, got {requested_qty!r}")
    if requested_qty < 0:
        raise ValueError(f"Quantity must not be negative, got {requested_qty!r}")
    return float(requested_qty)


def build_context(template: Template, selection: Selection) -> Dict[str, Any]:
    """Merged parameter map: defaults, then variant params, then overrides."""
    variant_params = selection.variant.params if selection.variant else {}
    return merge_params(template.default_params, variant_params, selection.overrides)


def alias_warnings(template: Template) -> List[str]:
    """Formulas reading a quantity alias that does not fit the template unit."""
    expected = UNIT_ALIASES.get((template.unit or "").strip().lower())
    if expected is None:
        return []
    other_aliases = {"LENGTH", "AREA", "VOLUME"} - {expected}
    warnings = []
    for component in template.sorted_components():
        try:
            names = referenced_identifiers(component.qty_formula)
        except FormulaError:
            continue
        for name in names:
            if name in other_aliases:
                warnings.append(
                    f"{component.ref_key}: formula uses {name.lower()} but template "
                    f"unit is {template.unit} (expected {expected.lower()})"
                )
    return warnings


def _price_line(
    component: Component,
    context: Mapping[str, float],
    prices: PriceLookup,
) -> PricedLineItem:
    line = PricedLineItem(
        ref_key=component.ref_key,
        type=component.type.value,
        sort=component.sort,
        note=component.note,
        qty_formula=component.qty_formula,
        resolved_qty=None,
        unit=None,
        unit_price=None,
        risk_factor=float(component.risk_factor),
        extended_cost=0.0,
        mandatory=component.mandatory,
        priced=False,
        status=LineStatus.OK,
    )

    try:
        qty = compile_formula(component.qty_formula).evaluate(context)
    except FormulaError as exc:
        logger.debug("Formula failed for %s: %s", component.ref_key, exc)
        line.status = LineStatus.FORMULA_ERROR
        line.error = exc.message
        line.error_code = exc.code
        return line
    except ArithmeticError as exc:
        logger.warning("Arithmetic failure for %s: %s", component.ref_key, exc)
        line.status = LineStatus.NON_FINITE
        line.error = f"Arithmetic error: {exc}"
        line.error_code = NonFiniteResultError.code
        return line

    line.resolved_qty = qty

    try:
        quote = prices.lookup_price(component.ref_key)
    except PriceNotFound as exc:
        line.status = LineStatus.UNPRICED
        line.error = exc.message
        line.error_code = exc.code
        if not math.isfinite(qty):
            line.status = LineStatus.NON_FINITE
        return line

    line.unit = quote.unit
    line.unit_price = float(quote.unit_price)
    line.priced = True

    if not math.isfinite(qty):
        line.status = LineStatus.NON_FINITE
        line.error = f"Quantity is not finite ({qty})"
        return line

    extended = qty * line.unit_price * line.risk_factor
    if not math.isfinite(extended):
        line.status = LineStatus.NON_FINITE
        line.error = f"Extended cost is not finite ({extended})"
        return line

    line.extended_cost = extended
    return line


def calculate(
    template: Template,
    selection: Union[Selection, Variant, Mapping[str, Any], None],
    requested_qty: float,
    prices: PriceLookup,
    currency: Optional[str] = None,
) -> Breakdown:
    """
    Price one template for a requested quantity.

    Raises ValueError for a negative or non-finite quantity and
    VariantNotFound when the selected variant belongs to another template.
    """
    qty = check_quantity(requested_qty)
    selection = Selection.of(selection)
    variant = selection.variant
    if variant is not None and variant.template_key != template.key:
        raise VariantNotFound(template.key, variant.key)

    params = build_context(template, selection)
    context = bind_aliases(numeric_context(params), QUANTITY_ALIASES, qty)

    lines = [_price_line(c, context, prices) for c in template.sorted_components()]

    # --- Totals (finite costs only) ---
    totals_by_type: Dict[str, float] = {}
    for component_type in COMPONENT_TYPE_ORDER:
        costs = [l.extended_cost for l in lines if l.type == component_type.value]
        if costs:
            totals_by_type[component_type.value] = math.fsum(
                c for c in costs if math.isfinite(c)
            )
    grand_total = math.fsum(
        l.extended_cost for l in lines if math.isfinite(l.extended_cost)
    )
    net_per_unit = grand_total / qty if qty > 0 else grand_total

    # --- Summaries ---
    missing_prices: List[str] = []
    for line in lines:
        if line.error_code == PriceNotFound.code and line.ref_key not in missing_prices:
            missing_prices.append(line.ref_key)
    formula_errors = [
        {"refKey": l.ref_key, "code": l.error_code, "message": l.error}
        for l in lines if l.status == LineStatus.FORMULA_ERROR
    ]
    non_finite = [l.ref_key for l in lines if l.status == LineStatus.NON_FINITE]
    if non_finite:
        logger.warning("Non-finite quantities in %s: %s", template.key, ", ".join(non_finite))

    unit = variant.unit_for(template) if variant else template.unit
    return Breakdown(
        template={
            "key": template.key,
            "title": template.title,
            "category": template.category,
            "unit": unit,
        },
        variant=(
            {"key": variant.key, "unit": variant.unit, "enabled": variant.enabled}
            if variant else None
        ),
        input={
            "qty": qty,
            "variantKey": variant.key if variant else None,
            "overrides": dict(selection.overrides),
        },
        params=params,
        lines=lines,
        totals_by_type=totals_by_type,
        grand_total=grand_total,
        net_per_unit=net_per_unit,
        currency=currency or settings.CURRENCY,
        missing_prices=missing_prices,
        formula_errors=formula_errors,
        warnings=alias_warnings(template),
    )
