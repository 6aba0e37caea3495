from sqlalchemy import (
    Column, Integer, String, Boolean, ForeignKey, Text, DateTime, func,
    UniqueConstraint, Index, JSON
)
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from .database import Base
import enum
import uuid


# JSONB on Postgres, plain JSON elsewhere (tests run on SQLite)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


class CardType(str, enum.Enum):
    form = "form"
    calculation = "calculation"
    info = "info"
    visual = "visual"
    submit = "submit"


class FieldType(str, enum.Enum):
    text = "text"
    number = "number"
    email = "email"
    select = "select"
    radio = "radio"
    buttons = "buttons"
    checkbox = "checkbox"
    textarea = "textarea"
    display = "display"


class LeadStatus(str, enum.Enum):
    new = "new"
    contacted = "contacted"
    qualified = "qualified"
    converted = "converted"


# ---------------------------
# ADMIN USER MODEL
# ---------------------------
class User(Base):
    __tablename__ = "user"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    username = Column(String, index=True)
    hashed_password = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    is_superuser = Column(Boolean, default=False, nullable=False)
    is_verified = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ---------------------------
# CARD SYSTEM
# ---------------------------
class CardTemplate(Base):
    __tablename__ = "card_templates"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    title = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False, default=CardType.form.value)
    display_order = Column(Integer, nullable=False, default=0, index=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    config = Column(JSONType, nullable=False, default=dict)
    styling = Column(JSONType, nullable=False, default=dict)

    # two-axis reveal model
    completion_rules = Column(JSONType, nullable=True)
    reveal_timing = Column(JSONType, nullable=True)
    # legacy single-field shape, read through the adapter in services.completion
    reveal_next_conditions = Column(JSONType, nullable=True)
    # deprecated display conditions, kept for old card data
    reveal_conditions = Column(JSONType, nullable=False, default=list)

    visual_object_id = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    fields = relationship(
        "CardField",
        back_populates="card",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="CardField.display_order",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<CardTemplate {self.name} ({self.type})>"


class CardField(Base):
    __tablename__ = "card_fields"
    __table_args__ = (
        UniqueConstraint("card_id", "field_name", name="uq_card_field_name"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    card_id = Column(String(36), ForeignKey("card_templates.id", ondelete="CASCADE"), index=True, nullable=False)
    field_name = Column(String(255), nullable=False)
    field_type = Column(String(20), nullable=False, default=FieldType.text.value)
    label = Column(String(255), nullable=False)
    placeholder = Column(Text, nullable=True)
    help_text = Column(Text, nullable=True)
    validation_rules = Column(JSONType, nullable=False, default=dict)
    width = Column(String(10), nullable=False, default="full")
    display_order = Column(Integer, nullable=False, default=0)
    options = Column(JSONType, nullable=False, default=list)
    required = Column(Boolean, nullable=False, default=False)
    is_completion_required = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    card = relationship("CardTemplate", back_populates="fields")


class FieldCompletion(Base):
    __tablename__ = "field_completions"
    __table_args__ = (
        UniqueConstraint("card_id", "field_name", "session_id", name="uq_field_completion"),
        Index("ix_field_completions_session", "session_id"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    # no FK: completion rows outlive card edits until the session is reset
    card_id = Column(String(36), nullable=False)
    field_name = Column(String(255), nullable=False)
    session_id = Column(String(255), nullable=False)
    field_value = Column(Text, nullable=True)
    is_complete = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CardCompletion(Base):
    __tablename__ = "card_completions"
    __table_args__ = (
        UniqueConstraint("card_id", "session_id", name="uq_card_completion"),
        Index("ix_card_completions_session", "session_id"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    card_id = Column(String(36), nullable=False)
    session_id = Column(String(255), nullable=False)
    is_complete = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    completion_trigger = Column(String(255), nullable=True)
    completion_data = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ---------------------------
# LEADS
# ---------------------------
class Lead(Base):
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_uuid)
    first_name = Column(String(255), nullable=False, default="")
    last_name = Column(String(255), nullable=False, default="")
    email = Column(String(255), nullable=False, default="", index=True)
    phone = Column(String(64), nullable=False, default="")
    city = Column(String(255), nullable=True)
    street_address = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default=LeadStatus.new.value, index=True)
    notes = Column(Text, nullable=True)

    form_data = Column(JSONType, nullable=False, default=dict)
    calculation_results = Column(JSONType, nullable=False, default=dict)

    session_id = Column(String(255), nullable=True)
    pdf_url = Column(String, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    source_page = Column(Text, nullable=True)
    gdpr_consent = Column(Boolean, nullable=False, default=False)
    marketing_consent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name or ''} {self.last_name or ''}".strip()


# ---------------------------
# APPEARANCE
# ---------------------------
class Theme(Base):
    __tablename__ = "themes"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    theme_data = Column(JSONType, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=False, index=True)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class CardStyleOverride(Base):
    __tablename__ = "card_style_overrides"
    __table_args__ = (
        UniqueConstraint("card_id", "theme_id", name="uq_card_style_override"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    card_id = Column(String(36), ForeignKey("card_templates.id", ondelete="CASCADE"), nullable=False)
    theme_id = Column(String(36), ForeignKey("themes.id", ondelete="CASCADE"), nullable=False)
    style_overrides = Column(JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ---------------------------
# FORMULAS
# ---------------------------
class Formula(Base):
    __tablename__ = "formulas"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    formula_text = Column(Text, nullable=False)
    formula_type = Column(String(50), nullable=False, default="energy_calculation")
    unit = Column(String(50), nullable=True)
    variables = Column(JSONType, nullable=False, default=dict)
    tags = Column(JSONType, nullable=False, default=list)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ---------------------------
# EMAIL / SHORTCODES
# ---------------------------
class EmailTemplate(Base):
    __tablename__ = "email_templates"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, unique=True)
    subject = Column(String(500), nullable=False)
    content = Column(Text, nullable=False)
    category = Column(String(50), nullable=False, default="other")
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class Shortcode(Base):
    __tablename__ = "shortcodes"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=False, default="")
    example = Column(Text, nullable=False, default="")
    category = Column(String(20), nullable=False, default="system")
    replacement_value = Column(Text, nullable=False, default="")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class PdfShortcode(Base):
    __tablename__ = "pdf_shortcodes"

    id = Column(String(36), primary_key=True, default=_uuid)
    code = Column(String(255), nullable=False, unique=True)  # e.g. {{asiakas_nimi}}
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="customer")
    source_type = Column(String(20), nullable=False, default="field")  # field|formula|static|special
    source_value = Column(Text, nullable=False, default="")
    format_type = Column(String(20), nullable=True)  # text|number|currency|percentage|date
    format_options = Column(JSONType, nullable=False, default=dict)
    fallback_value = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


# ---------------------------
# FORM SCHEMAS (visual form builder)
# ---------------------------
class FormSchema(Base):
    __tablename__ = "form_schemas"

    id = Column(String(36), primary_key=True, default=_uuid)
    # versions of one form share a name; the active row with the highest version is live
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    schema_data = Column(JSONType, nullable=False, default=dict)  # pages -> sections -> fields
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_by = Column(Integer, ForeignKey("user.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
