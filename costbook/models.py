from sqlalchemy import Column, Integer, String, Float, DateTime, Date, Text, ForeignKey, Boolean, JSON, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, date
from .database import Base


# --- Recipe catalog ---

class RecipeTemplate(Base):
    """A reusable work item (e.g. trench excavation per m) with its default parameters."""
    __tablename__ = "recipe_templates"

    id = Column(Integer, primary_key=True, index=True)
    key = Column(String, unique=True, nullable=False, index=True)  # immutable once published
    title = Column(String, nullable=False, default="")
    category = Column(String, nullable=False, default="")
    unit = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    default_params = Column(JSON, default=dict)
    axes = Column(JSON, default=dict)  # {name: [values...]} drives variant generation
    tags = Column(JSON, default=list)
    # Bumped on every variant regeneration
    generation = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    components = relationship(
        "RecipeComponent",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="RecipeComponent.sort",
    )
    variants = relationship(
        "RecipeVariant",
        back_populates="template",
        cascade="all, delete-orphan",
        order_by="RecipeVariant.id",
    )


class RecipeComponent(Base):
    """One cost line of a template. Always replaced as a full list, never diffed."""
    __tablename__ = "recipe_components"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("recipe_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    # labor | machine | material | disposal | surface | other, stored as VARCHAR
    type = Column(String, nullable=False)
    ref_key = Column(String, nullable=False)
    qty_formula = Column(Text, nullable=False)
    mandatory = Column(Boolean, default=True, nullable=False)
    risk_factor = Column(Float, default=1.0, nullable=False)
    sort = Column(Integer, default=0, nullable=False)
    note = Column(Text, nullable=True)

    template = relationship("RecipeTemplate", back_populates="components")


class RecipeVariant(Base):
    """A concrete parameter set of a template, keyed by content hash."""
    __tablename__ = "recipe_variants"

    id = Column(Integer, primary_key=True, index=True)
    template_id = Column(Integer, ForeignKey("recipe_templates.id", ondelete="CASCADE"), nullable=False, index=True)
    key = Column(String, unique=True, nullable=False, index=True)
    unit = Column(String, nullable=True)  # None -> template unit
    params = Column(JSON, default=dict)
    label = Column(String, nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)
    generation = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    template = relationship("RecipeTemplate", back_populates="variants")


# --- Prices ---

class PriceItem(Base):
    """Unit price for a refKey, valid from valid_from until valid_to (open when null)."""
    __tablename__ = "price_items"
    __table_args__ = (UniqueConstraint("ref_key", "valid_from", name="uq_price_items_ref_key_valid_from"),)

    id = Column(Integer, primary_key=True, index=True)
    ref_key = Column(String, nullable=False, index=True)
    title = Column(String, nullable=True)
    type = Column(String, nullable=True)
    unit = Column(String, nullable=True)
    price = Column(Float, nullable=False)
    valid_from = Column(Date, nullable=False, default=date(2000, 1, 1))
    valid_to = Column(Date, nullable=True)
    note = Column(String, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
