import re
from typing import Any, Dict, List, Literal, Optional, Union

from fastapi_users import schemas as fu_schemas
from pydantic import BaseModel, ConfigDict, EmailStr, Field, ValidationError, field_validator, model_validator

FINNISH_PHONE_RE = re.compile(r"^(\+358|0)[1-9]\d{7,9}$")
NAME_RE = re.compile(r"^[a-zA-ZäöåÄÖÅ\s\-']+$")


# =========================
# ADMIN USER SCHEMAS
# =========================
class UserRead(fu_schemas.BaseUser[int]):
    username: Optional[str] = None


class UserUpdate(fu_schemas.BaseUserUpdate):
    username: Optional[str] = None


# =========================
# CARD BUILDER
# =========================
CardTypeLiteral = Literal["form", "calculation", "info", "visual", "submit"]
FieldTypeLiteral = Literal["text", "number", "email", "select", "radio", "buttons", "checkbox", "textarea", "display"]


class FieldOption(BaseModel):
    value: str
    label: str


class FieldBase(BaseModel):
    field_type: FieldTypeLiteral = "text"
    label: Optional[str] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    validation_rules: Dict[str, Any] = Field(default_factory=dict)
    width: Literal["full", "half", "third"] = "full"
    display_order: Optional[int] = None
    options: List[FieldOption] = Field(default_factory=list)
    required: bool = False
    is_completion_required: bool = False


class FieldCreate(FieldBase):
    field_name: str = Field(min_length=1, max_length=255)


class FieldUpdate(BaseModel):
    field_name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    field_type: Optional[FieldTypeLiteral] = None
    label: Optional[str] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    validation_rules: Optional[Dict[str, Any]] = None
    width: Optional[Literal["full", "half", "third"]] = None
    display_order: Optional[int] = None
    options: Optional[List[FieldOption]] = None
    required: Optional[bool] = None
    is_completion_required: Optional[bool] = None


class CardCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    title: str = Field(min_length=1, max_length=255)
    type: CardTypeLiteral = "form"
    display_order: Optional[int] = None
    is_active: bool = True
    config: Dict[str, Any] = Field(default_factory=dict)
    styling: Dict[str, Any] = Field(default_factory=dict)
    completion_rules: Optional[Dict[str, Any]] = None
    reveal_timing: Optional[Dict[str, Any]] = None
    visual_object_id: Optional[str] = None
    fields: List[FieldCreate] = Field(default_factory=list)


class CardUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    type: Optional[CardTypeLiteral] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None
    config: Optional[Dict[str, Any]] = None
    styling: Optional[Dict[str, Any]] = None
    visual_object_id: Optional[str] = None


class ReorderPayload(BaseModel):
    ids: List[str]


class CompletionRulePayload(BaseModel):
    type: Literal["any_field", "required_fields", "all_fields"]
    required_field_names: List[str] = Field(default_factory=list)


class RevealTimingPayload(BaseModel):
    timing: Literal["immediately", "after_delay"]
    delay_seconds: Optional[int] = Field(default=None, ge=1, le=60)


class CardRulesPayload(BaseModel):
    completion: CompletionRulePayload
    reveal: RevealTimingPayload


# =========================
# THEMES
# =========================
class ThemeCore(BaseModel):
    primaryColor: Optional[str] = None
    secondaryColor: Optional[str] = None
    fontFamily: Optional[str] = None
    headingFontFamily: Optional[str] = None
    fieldSettings: Optional[Dict[str, Any]] = None


class ThemeCreate(ThemeCore):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None


class ThemeUpdate(ThemeCore):
    name: Optional[str] = None
    description: Optional[str] = None


class CardOverridePayload(BaseModel):
    style_overrides: Dict[str, Any] = Field(default_factory=dict)


# =========================
# FORMULAS / SHORTCODES / EMAIL
# =========================
FormulaTypeLiteral = Literal["energy_calculation", "custom", "template"]


class FormulaCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    formula_text: str = Field(min_length=1)
    formula_type: FormulaTypeLiteral = "energy_calculation"
    unit: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    is_active: bool = True


class FormulaUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    formula_text: Optional[str] = None
    formula_type: Optional[FormulaTypeLiteral] = None
    unit: Optional[str] = None
    variables: Optional[Dict[str, Any]] = None
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None


class FormulaTextPayload(BaseModel):
    formula_text: str


class FormulaExecutePayload(BaseModel):
    formula_id: Optional[str] = None
    formula_text: Optional[str] = None
    form_data: Dict[str, Any] = Field(default_factory=dict)


class ShortcodeCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    example: str = ""
    category: Literal["customer", "results", "company", "system"] = "system"
    replacement_value: str = ""


class ShortcodeUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    example: Optional[str] = None
    category: Optional[Literal["customer", "results", "company", "system"]] = None
    replacement_value: Optional[str] = None


class ContentPayload(BaseModel):
    content: str
    context: Dict[str, Any] = Field(default_factory=dict)


class PdfShortcodeCreate(BaseModel):
    code: str
    name: str
    description: Optional[str] = None
    category: str = "customer"
    source_type: Literal["field", "formula", "static", "special"] = "field"
    source_value: str = ""
    format_type: Optional[Literal["text", "number", "currency", "percentage", "date"]] = None
    format_options: Dict[str, Any] = Field(default_factory=dict)
    fallback_value: Optional[str] = None
    is_active: bool = True


class PdfShortcodeUpdate(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    source_type: Optional[Literal["field", "formula", "static", "special"]] = None
    source_value: Optional[str] = None
    format_type: Optional[Literal["text", "number", "currency", "percentage", "date"]] = None
    format_options: Optional[Dict[str, Any]] = None
    fallback_value: Optional[str] = None
    is_active: Optional[bool] = None


class PdfPreviewPayload(BaseModel):
    template: str
    lead_id: Optional[str] = None
    sample: Dict[str, Any] = Field(default_factory=dict)
    custom_values: Dict[str, Any] = Field(default_factory=dict)


EmailCategoryLiteral = Literal["results", "sales-notification", "welcome", "follow-up", "other"]


class EmailTemplateCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    subject: str = Field(min_length=1, max_length=500)
    content: str = Field(min_length=1)
    category: EmailCategoryLiteral = "other"


class EmailTemplateUpdate(BaseModel):
    name: Optional[str] = None
    subject: Optional[str] = None
    content: Optional[str] = None
    category: Optional[EmailCategoryLiteral] = None


class EmailPreviewPayload(BaseModel):
    lead_id: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


# =========================
# FORM SCHEMAS
# =========================
FormFieldTypeLiteral = Literal["text", "number", "email", "select", "radio", "checkbox", "textarea"]


class FormFieldValidation(BaseModel):
    model_config = ConfigDict(extra="allow")

    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    minLength: Optional[int] = Field(default=None, ge=0)
    maxLength: Optional[int] = Field(default=None, ge=0)
    pattern: Optional[str] = None


class FormFieldSpec(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1, max_length=100)
    type: FormFieldTypeLiteral
    label: str = Field(min_length=1)
    placeholder: Optional[str] = None
    helpText: Optional[str] = None
    required: bool = False
    enabled: bool = True
    imageUrl: Optional[str] = None
    options: List[Union[str, FieldOption]] = Field(default_factory=list)
    validation: FormFieldValidation = Field(default_factory=FormFieldValidation)

    @model_validator(mode="after")
    def _consistent(self) -> "FormFieldSpec":
        if self.type in ("select", "radio") and not self.options:
            raise ValueError(f"{self.type.capitalize()} field {self.id} must have options")
        v = self.validation
        if v.min is not None and v.max is not None and v.min > v.max:
            raise ValueError(f"Field {self.id} has invalid range constraints")
        if v.minLength is not None and v.maxLength is not None and v.minLength > v.maxLength:
            raise ValueError(f"Field {self.id} has invalid length constraints")
        if v.pattern:
            try:
                re.compile(v.pattern)
            except re.error as exc:
                raise ValueError(f"Field {self.id} has an invalid pattern: {exc}") from exc
        return self

    def option_values(self) -> List[str]:
        return [o if isinstance(o, str) else o.value for o in self.options]


class FormSectionSpec(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: Optional[str] = None
    enabled: bool = True
    collapsible: bool = False
    imageUrl: Optional[str] = None
    fields: List[FormFieldSpec] = Field(min_length=1)


class FormPageSpec(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    sections: List[FormSectionSpec] = Field(min_length=1)


class FormSchemaDocument(BaseModel):
    """The ``schema_data`` document authored in the form builder."""

    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    pages: List[FormPageSpec] = Field(min_length=1)

    @model_validator(mode="after")
    def _unique_field_ids(self) -> "FormSchemaDocument":
        seen: set = set()
        for page in self.pages:
            for section in page.sections:
                for f in section.fields:
                    if f.id in seen:
                        raise ValueError(f"Duplicate field id '{f.id}'")
                    seen.add(f.id)
        return self


class FormSchemaCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    schema_data: Dict[str, Any]


class FormSchemaUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    schema_data: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class FormSchemaVersionPayload(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    schema_data: Optional[Dict[str, Any]] = None


class FormSubmissionCheck(BaseModel):
    name: Optional[str] = None
    form_data: Dict[str, Any] = Field(default_factory=dict)


# =========================
# LEADS
# =========================
LeadStatusLiteral = Literal["new", "contacted", "qualified", "converted"]


class LeadUpdate(BaseModel):
    status: Optional[LeadStatusLiteral] = None
    notes: Optional[str] = None


class BulkStatusPayload(BaseModel):
    ids: List[str] = Field(min_length=1)
    status: LeadStatusLiteral


class BulkDeletePayload(BaseModel):
    ids: List[str] = Field(min_length=1)


class LeadSubmission(BaseModel):
    """Body of a calculator submission. Any extra card field is kept."""

    model_config = ConfigDict(extra="allow")

    neliot: float = Field(gt=0)
    sahkoposti: EmailStr
    huonekorkeus: Optional[float] = 2.5
    henkilomaara: Optional[int] = 2
    vesikiertoinen: Optional[float] = 0
    lammitysmuoto: Optional[str] = ""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    nimi: Optional[str] = None
    puhelinnumero: Optional[str] = ""
    paikkakunta: Optional[str] = None
    osoite: Optional[str] = None
    session_id: Optional[str] = None
    gdpr_consent: bool = False
    marketing_consent: bool = False

    @field_validator("neliot", "huonekorkeus", "vesikiertoinen", mode="before")
    @classmethod
    def _decimal_comma(cls, v):
        if isinstance(v, str):
            return v.strip().replace(",", ".") or None
        return v

    @field_validator("henkilomaara", mode="before")
    @classmethod
    def _residents(cls, v):
        if isinstance(v, str):
            digits = re.match(r"\d+", v.strip())
            return int(digits.group(0)) if digits else 2
        return v


# =========================
# CALCULATOR RUNTIME
# =========================
class SessionPayload(BaseModel):
    session_id: Optional[str] = None


class FieldChangePayload(BaseModel):
    session_id: str = Field(min_length=1)
    card_id: str
    field_name: str
    value: Any = None


class CardCompletePayload(BaseModel):
    session_id: str = Field(min_length=1)
    card_id: str
    trigger: Optional[Literal["auto_complete", "submit_click"]] = None


class SavingsRequest(BaseModel):
    square_meters: float = Field(gt=0)
    ceiling_height: float = Field(default=2.5, gt=0)
    residents: int = Field(default=2, ge=0)
    current_heating_cost: float = Field(ge=0)
    current_heating_type: str = "other"


class MetricsRequest(BaseModel):
    form_data: Dict[str, Any] = Field(default_factory=dict)


class StepPayload(BaseModel):
    step: int
    data: Dict[str, Any] = Field(default_factory=dict)


# =========================
# STEP VALIDATION (calculator wizard)
# =========================
class HouseInfo(BaseModel):
    squareMeters: float = Field(ge=10, le=1000)
    ceilingHeight: Literal["2.5", "3.0", "3.5"]
    constructionYear: Literal["<1970", "1970-1990", "1991-2010", ">2010"]
    floors: Literal["1", "2", "3+"]


class CurrentHeating(BaseModel):
    heatingType: Literal["oil", "electric", "district", "other"]
    annualHeatingCost: float = Field(ge=100, le=20000)
    currentEnergyConsumption: Optional[float] = Field(default=None, ge=0, le=50000)


class Household(BaseModel):
    residents: Literal["1", "2", "3", "4", "5", "6", "7", "8+"]
    hotWaterUsage: Literal["low", "normal", "high"]


class ContactInfo(BaseModel):
    firstName: str = Field(min_length=2, max_length=50)
    lastName: str = Field(min_length=2, max_length=50)
    email: EmailStr = Field(max_length=255)
    phone: str
    streetAddress: Optional[str] = Field(default=None, max_length=255)
    city: Optional[str] = Field(default=None, max_length=100)
    contactPreference: Literal["email", "phone", "both"]
    message: Optional[str] = Field(default=None, max_length=1000)
    gdprConsent: bool
    marketingConsent: Optional[bool] = None

    @field_validator("firstName", "lastName")
    @classmethod
    def _name_chars(cls, v: str) -> str:
        v = v.strip()
        if not NAME_RE.match(v):
            raise ValueError("Name contains invalid characters")
        return v

    @field_validator("phone")
    @classmethod
    def _finnish_phone(cls, v: str) -> str:
        compact = re.sub(r"[\s\-]", "", v or "")
        if not FINNISH_PHONE_RE.match(compact):
            raise ValueError("Please enter a valid Finnish phone number (e.g., +358401234567 or 0401234567)")
        return compact

    @field_validator("gdprConsent")
    @classmethod
    def _consent(cls, v: bool) -> bool:
        if v is not True:
            raise ValueError("You must agree to the privacy policy to continue")
        return v


class CalculatorForm(HouseInfo, CurrentHeating, Household, ContactInfo):
    pass


STEP_SCHEMAS = {1: HouseInfo, 2: CurrentHeating, 3: Household, 4: ContactInfo}
STEP_NAMES = {1: "House Information", 2: "Current Heating", 3: "Household", 4: "Contact Information"}


def step_errors(step: int, data: dict) -> Optional[Dict[str, List[str]]]:
    """Messages per field for one wizard step; None when the step validates."""
    schema = STEP_SCHEMAS.get(step)
    if schema is None:
        raise ValueError(f"Invalid step: {step}")
    try:
        schema.model_validate(data)
    except ValidationError as exc:
        errors: Dict[str, List[str]] = {}
        for issue in exc.errors():
            path = ".".join(str(p) for p in issue["loc"]) or "_"
            errors.setdefault(path, []).append(issue["msg"])
        return errors
    return None


def validate_step(step: int, data: dict) -> bool:
    return step_errors(step, data) is None


def form_errors(data: dict) -> Optional[Dict[str, List[str]]]:
    try:
        CalculatorForm.model_validate(data)
    except ValidationError as exc:
        errors: Dict[str, List[str]] = {}
        for issue in exc.errors():
            errors.setdefault(".".join(str(p) for p in issue["loc"]) or "_", []).append(issue["msg"])
        return errors
    return None
