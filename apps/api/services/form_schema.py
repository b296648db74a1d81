"""
Form Schema Model

Admin-defined templates: ordered sections containing ordered fields, each
field carrying a type, validation rules and an analytics configuration.

Stored documents use camelCase keys (the document store's convention);
Python code uses snake_case attributes. Both names are accepted on input.

Section and field `order` values drive display and processing order. They
need not be contiguous and may tie; ties keep insertion order, so sorting
must be stable (Python's sorted() is).
"""
import math
import re
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class FieldType(str, Enum):
    YESNO = "yesno"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    NUMERIC = "numeric"
    SCALE = "scale"
    TEXT = "text"
    TEXTAREA = "textarea"
    DATE = "date"
    TIME = "time"


class AnalyticsType(str, Enum):
    AVERAGE = "average"
    SUM = "sum"
    PERCENTAGE = "percentage"
    DISTRIBUTION = "distribution"
    CONSISTENCY = "consistency"
    COUNT = "count"
    TREND = "trend"
    NONE = "none"


# Analytics types that make no sense for a field type
INCOMPATIBLE_ANALYTICS = {
    FieldType.YESNO: {AnalyticsType.SUM, AnalyticsType.DISTRIBUTION},
    FieldType.TEXT: {AnalyticsType.AVERAGE, AnalyticsType.SUM, AnalyticsType.PERCENTAGE},
    FieldType.TEXTAREA: {AnalyticsType.AVERAGE, AnalyticsType.SUM, AnalyticsType.PERCENTAGE},
    FieldType.RADIO: {AnalyticsType.AVERAGE, AnalyticsType.SUM},
    FieldType.CHECKBOX: {AnalyticsType.AVERAGE, AnalyticsType.SUM},
}


class SchemaModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FieldValidation(SchemaModel):
    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    custom_error_message: Optional[str] = None


class FieldAnalyticsConfig(SchemaModel):
    enabled: bool = False
    type: AnalyticsType = AnalyticsType.NONE
    category: Optional[str] = None
    display_name: Optional[str] = None
    higher_is_better: bool = True
    target_value: Optional[float] = None


class FormField(SchemaModel):
    id: str
    label: str
    type: FieldType
    order: float = 0
    description: Optional[str] = None
    placeholder: Optional[str] = None
    options: Optional[List[str]] = None
    include_comments: bool = False
    validation: FieldValidation = Field(default_factory=FieldValidation)
    analytics: FieldAnalyticsConfig = Field(default_factory=FieldAnalyticsConfig)


class FormSection(SchemaModel):
    id: str
    title: str
    order: float = 0
    description: Optional[str] = None
    fields: List[FormField] = Field(default_factory=list)
    is_repeatable: bool = False
    repeat_label: Optional[str] = None
    max_repeats: Optional[int] = None


class FormTemplate(SchemaModel):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    sport: Optional[str] = None
    version: int = 1
    is_active: bool = False
    is_archived: bool = False
    allow_partial_submission: bool = False
    sections: List[FormSection] = Field(default_factory=list)
    created_by: Optional[str] = None
    last_modified_by: Optional[str] = None
    usage_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def iter_fields(self):
        """Yield (section, field) pairs in stored order."""
        for section in self.sections:
            for f in section.fields:
                yield section, f


class ValidationIssue(BaseModel):
    path: str
    message: str


class TemplateValidationResult(BaseModel):
    is_valid: bool
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)


# ==================== ORDERING ====================

def _order_key(item) -> float:
    return item.order


def sort_template(template: FormTemplate) -> FormTemplate:
    """
    Return a copy with sections and their fields sorted by order ascending.

    Stable, so equal orders keep insertion order; sorting twice gives the
    same sequence as sorting once.
    """
    sections = [
        section.model_copy(update={"fields": sorted(section.fields, key=_order_key)})
        for section in sorted(template.sections, key=_order_key)
    ]
    return template.model_copy(update={"sections": sections})


# ==================== SERIALIZATION ====================

def template_to_document(template: FormTemplate) -> Dict[str, Any]:
    """Serialize to a JSON-compatible, camelCase document."""
    return template.model_dump(mode="json", by_alias=True)


def template_from_document(document: Dict[str, Any], template_id: Optional[str] = None) -> FormTemplate:
    data = dict(document)
    if template_id is not None:
        data["id"] = template_id
    return FormTemplate.model_validate(data)


def _structure_signature(template: FormTemplate):
    return [
        (
            section.id,
            section.order,
            section.is_repeatable,
            [
                (
                    f.id,
                    f.type,
                    f.order,
                    tuple(f.options or ()),
                    f.validation.model_dump(),
                    f.analytics.model_dump(),
                )
                for f in section.fields
            ],
        )
        for section in template.sections
    ]


def is_structural_change(old: FormTemplate, new: FormTemplate) -> bool:
    """Whether new changes anything that affects how stored responses are read."""
    return _structure_signature(old) != _structure_signature(new)


# ==================== TEMPLATE VALIDATION ====================

def validate_template(template: FormTemplate) -> TemplateValidationResult:
    """Validate a template's structure."""
    errors: List[ValidationIssue] = []
    warnings: List[ValidationIssue] = []

    if not template.name or not template.name.strip():
        errors.append(ValidationIssue(path="name", message="Template name is required"))

    if not template.sections:
        errors.append(ValidationIssue(path="sections", message="Template must have at least one section"))

    section_ids = set()
    for s_idx, section in enumerate(template.sections):
        section_path = f"sections[{s_idx}]"

        if section.id in section_ids:
            errors.append(ValidationIssue(path=f"{section_path}.id", message=f"Duplicate section ID: {section.id}"))
        section_ids.add(section.id)

        if not section.title or not section.title.strip():
            errors.append(ValidationIssue(path=f"{section_path}.title", message="Section title is required"))

        if not section.fields:
            warnings.append(ValidationIssue(path=f"{section_path}.fields", message="Section has no fields"))

        field_ids = set()
        for f_idx, f in enumerate(section.fields):
            field_path = f"{section_path}.fields[{f_idx}]"
            if f.id in field_ids:
                errors.append(ValidationIssue(path=f"{field_path}.id", message=f"Duplicate field ID: {f.id}"))
            field_ids.add(f.id)
            errors.extend(_validate_field(f, field_path))

    return TemplateValidationResult(is_valid=not errors, errors=errors, warnings=warnings)


def _validate_field(f: FormField, path: str) -> List[ValidationIssue]:
    errors: List[ValidationIssue] = []

    if not f.label or not f.label.strip():
        errors.append(ValidationIssue(path=f"{path}.label", message="Field label is required"))

    if f.type in (FieldType.RADIO, FieldType.CHECKBOX) and not f.options:
        errors.append(ValidationIssue(path=f"{path}.options", message="Radio and checkbox fields require options"))

    if f.type in (FieldType.SCALE, FieldType.NUMERIC):
        v = f.validation
        if v.min is not None and v.max is not None and v.min >= v.max:
            errors.append(ValidationIssue(path=f"{path}.validation", message="Min value must be less than max value"))

    if f.validation.pattern is not None:
        try:
            re.compile(f.validation.pattern)
        except re.error as e:
            errors.append(ValidationIssue(path=f"{path}.validation.pattern", message=f"Invalid pattern: {e}"))

    if f.analytics.enabled:
        if f.analytics.type is AnalyticsType.NONE:
            errors.append(ValidationIssue(
                path=f"{path}.analytics.type",
                message="Analytics type required when analytics is enabled",
            ))
        elif f.analytics.type in INCOMPATIBLE_ANALYTICS.get(f.type, ()):
            errors.append(ValidationIssue(
                path=f"{path}.analytics.type",
                message=f"Analytics type '{f.analytics.type.value}' is not compatible with field type '{f.type.value}'",
            ))

    return errors


# ==================== RESPONSES ====================

# A section record maps field id -> raw value or {"value": ..., "comments": ...}
SectionRecord = Dict[str, Any]
FormResponses = Dict[str, Union[SectionRecord, List[SectionRecord]]]


def field_value(raw: Any) -> Any:
    """Unwrap a stored field response into its value."""
    if isinstance(raw, dict) and "value" in raw:
        return raw["value"]
    return raw


def is_value_present(raw: Any) -> bool:
    value = field_value(raw)
    if value is None:
        return False
    if isinstance(value, str) and value.strip() == "":
        return False
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return False
    return True


def _first_record(section: FormSection, section_data: Any) -> Optional[dict]:
    """Record whose values count toward completion (first instance when repeatable)."""
    if section.is_repeatable:
        if isinstance(section_data, list) and section_data and isinstance(section_data[0], dict):
            return section_data[0]
        return None
    return section_data if isinstance(section_data, dict) else None


class Completion(BaseModel):
    is_complete: bool
    percentage: int
    total_fields: int
    completed_fields: int


def calculate_completion(template: FormTemplate, responses: FormResponses) -> Completion:
    """
    Derive completion from responses against the template.

    Complete means every required field has a value; the percentage counts
    required and optional fields alike.
    """
    total_required = completed_required = 0
    total_optional = completed_optional = 0
    responses = responses if isinstance(responses, dict) else {}

    for section in template.sections:
        record = _first_record(section, responses.get(section.id))
        for f in section.fields:
            has_value = record is not None and is_value_present(record.get(f.id))
            if f.validation.required:
                total_required += 1
                completed_required += int(has_value)
            else:
                total_optional += 1
                completed_optional += int(has_value)

    total = total_required + total_optional
    completed = completed_required + completed_optional
    percentage = int(completed * 100 / total + 0.5) if total else 0
    return Completion(
        is_complete=total_required == completed_required,
        percentage=percentage,
        total_fields=total,
        completed_fields=completed,
    )


class ResponseError(BaseModel):
    section_id: str
    field_id: str
    message: str
    code: str = "invalid"  # "required" or "invalid"


def as_number(value: Any) -> Optional[float]:
    """Finite float for a numeric response, or None. Booleans are not numbers."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _check_value(f: FormField, value: Any) -> Optional[str]:
    v = f.validation
    if f.type in (FieldType.NUMERIC, FieldType.SCALE):
        number = as_number(value)
        if number is None:
            return f"{f.label} must be a number"
        if v.min is not None and number < v.min:
            return f"{f.label} must be at least {v.min:g}"
        if v.max is not None and number > v.max:
            return f"{f.label} must be at most {v.max:g}"
    elif f.type is FieldType.RADIO and f.options:
        if str(value) not in f.options:
            return f"{f.label} must be one of {', '.join(f.options)}"
    elif f.type is FieldType.CHECKBOX and f.options:
        values = value if isinstance(value, list) else [value]
        unknown = [str(x) for x in values if str(x) not in f.options]
        if unknown:
            return f"{f.label} has unknown options: {', '.join(unknown)}"
    elif f.type in (FieldType.TEXT, FieldType.TEXTAREA) and isinstance(value, str):
        if v.min_length is not None and len(value) < v.min_length:
            return f"{f.label} must be at least {v.min_length} characters"
        if v.max_length is not None and len(value) > v.max_length:
            return f"{f.label} must be at most {v.max_length} characters"
        if v.pattern:
            try:
                matched = re.fullmatch(v.pattern, value)
            except re.error:
                return f"{f.label} has an unusable format rule"
            if not matched:
                return v.custom_error_message or f"{f.label} has an invalid format"
    return None


def validate_responses(template: FormTemplate, responses: FormResponses) -> List[ResponseError]:
    """Check required fields and per-field rules. Returns an empty list when valid."""
    errors: List[ResponseError] = []
    responses = responses if isinstance(responses, dict) else {}

    for section in template.sections:
        section_data = responses.get(section.id)
        record = _first_record(section, section_data)
        for f in section.fields:
            if f.validation.required and not (record is not None and is_value_present(record.get(f.id))):
                errors.append(ResponseError(
                    section_id=section.id, field_id=f.id, message=f"{f.label} is required", code="required"
                ))

        if section.is_repeatable:
            instances = section_data if isinstance(section_data, list) else []
        else:
            instances = [section_data] if isinstance(section_data, dict) else []
        for instance in instances:
            if not isinstance(instance, dict):
                continue
            for f in section.fields:
                raw = instance.get(f.id)
                if not is_value_present(raw):
                    continue
                message = _check_value(f, field_value(raw))
                if message:
                    errors.append(ResponseError(section_id=section.id, field_id=f.id, message=message))

    return errors
