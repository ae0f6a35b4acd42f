"""
Dynamic screening forms: conditional visibility, answer validation,
weighted risk scoring and template lifecycle.
"""
import re
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, ValidationError
from sqlalchemy.orm import Session

from app.core.clock import Clock, utcnow
from app.core.logging import get_logger, audit_logger
from app.db.models import (
    AuditLog, FieldType, FormField, FormFieldOption, FormSubmission,
    FormSubmissionAnswer, FormTemplate, RiskLevel,
)

logger = get_logger(__name__)


# ============= ERRORS =============

class FormEngineError(Exception):
    """Base error for form engine operations."""


class TemplateInUseError(FormEngineError):
    """Template or field already has submissions/answers attached."""


class CoreFieldProtectedError(FormEngineError):
    """Core fields cannot be deleted."""


class InvalidConditionalRuleError(FormEngineError):
    """Stored or submitted conditional logic is malformed."""


class AnswerValidationError(FormEngineError):
    """Submitted answers do not satisfy the template."""

    def __init__(self, errors: Dict[str, str]):
        self.errors = errors
        super().__init__("; ".join(f"{key}: {msg}" for key, msg in errors.items()))


# ============= CONDITIONAL LOGIC =============

class ConditionOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"


class ConditionalRule(BaseModel):
    """Show a field only when another field's answer satisfies `operator`."""
    model_config = ConfigDict(extra="forbid", frozen=True)

    field_key: str
    operator: ConditionOperator = ConditionOperator.EQUALS
    value: Any = None

    @classmethod
    def load(cls, raw: Optional[dict]) -> Optional["ConditionalRule"]:
        if not raw:
            return None
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise InvalidConditionalRuleError(str(e)) from e

    def matches(self, actual: Any) -> bool:
        if self.operator == ConditionOperator.EQUALS:
            return _loose_equals(actual, self.value)
        if self.operator == ConditionOperator.NOT_EQUALS:
            return not _loose_equals(actual, self.value)
        if isinstance(actual, (list, tuple)):
            return any(_loose_equals(item, self.value) for item in actual)
        return str(self.value) in str(actual)


def _loose_equals(actual: Any, expected: Any) -> bool:
    if isinstance(actual, (list, tuple)) or isinstance(expected, (list, tuple)):
        return actual == expected
    return str(actual) == str(expected)


def should_show(field: FormField, answers_by_key: Dict[str, Any]) -> bool:
    """
    Whether `field` is visible given the answers so far.

    Fields without a rule are always shown; a rule whose dependent field has
    no answer yet hides the field.
    """
    rule = ConditionalRule.load(field.conditional_logic)
    if rule is None:
        return True
    actual = answers_by_key.get(rule.field_key)
    if actual is None or actual == "" or actual == []:
        return False
    return rule.matches(actual)


# ============= SCORING =============

def determine_risk_level(total_score: int) -> RiskLevel:
    if total_score >= 26:
        return RiskLevel.CRITICAL
    if total_score >= 16:
        return RiskLevel.HIGH
    if total_score >= 6:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _matching_option(field: FormField, value: Any) -> Optional[FormFieldOption]:
    if isinstance(value, (list, dict)) or value is None:
        return None
    for option in field.options:
        if option.value == str(value):
            return option
    return None


def resolve_answer_risk(answer: FormSubmissionAnswer) -> int:
    """
    Resolve and store the risk score of one answer.

    Choice fields take the score of the option whose value equals the answer;
    anything else keeps the manually stored score.
    """
    field = answer.field
    if field is not None and field.has_options:
        option = _matching_option(field, answer.answer_value)
        if option is not None:
            answer.risk_score = option.risk_score or 0
            return answer.risk_score
    answer.risk_score = answer.risk_score or 0
    return answer.risk_score


def score_submission(db: Session, submission: FormSubmission) -> Tuple[int, RiskLevel]:
    """
    Recompute total_risk_score and risk_level of a submission and persist them.

    Returns:
        Tuple of (total_risk_score, risk_level)
    """
    total = 0
    for answer in submission.answers:
        weight = answer.field.risk_weight if answer.field is not None else 0
        total += (weight or 0) + resolve_answer_risk(answer)

    level = determine_risk_level(total)
    submission.total_risk_score = total
    submission.risk_level = level.value
    db.flush()

    logger.info(f"Scored submission {submission.id}: {total} ({level.value})")
    return total, level


MANUAL_SCORE_RANGE = (0, 10)


def set_manual_score(db: Session, answer: FormSubmissionAnswer, score: int,
                     reviewer_id: Optional[int] = None) -> Tuple[int, RiskLevel]:
    """
    Record a reviewer's score on an answer and rescore its submission.

    Answers whose score comes from a matching option cannot be overridden.
    """
    low, high = MANUAL_SCORE_RANGE
    if not low <= score <= high:
        raise FormEngineError(f"Manual score must be between {low} and {high}")
    field = answer.field
    if field is not None and field.has_options \
            and _matching_option(field, answer.answer_value) is not None:
        raise FormEngineError(f"Answer to '{field.field_key}' is scored by its option")

    answer.risk_score = score
    result = score_submission(db, answer.submission)
    audit_logger.log("ANSWER_SCORED", user_id=reviewer_id, entity_type="form_submission",
                     entity_id=answer.form_submission_id,
                     details={"answer_id": answer.id, "risk_score": score, "total": result[0]})
    return result


# ============= SUBMISSIONS =============

def _answers_by_key(template: FormTemplate, answers: Dict[int, Any]) -> Dict[str, Any]:
    keys = {f.id: f.field_key for f in template.fields}
    return {keys[field_id]: value for field_id, value in answers.items() if field_id in keys}


def validate_answers(
    template: FormTemplate,
    answers: Dict[int, Any],
    explanations: Optional[Dict[int, str]] = None,
) -> None:
    """
    Check submitted answers (keyed by field id) against the template.

    Raises:
        AnswerValidationError with a message per offending field key
    """
    explanations = explanations or {}
    fields_by_id = {f.id: f for f in template.fields}
    by_key = _answers_by_key(template, answers)
    errors: Dict[str, str] = {}

    for field_id in answers:
        if field_id not in fields_by_id:
            errors[str(field_id)] = "field does not belong to this template"

    for field in template.fields:
        value = answers.get(field.id)
        empty = value is None or value == "" or value == []

        if empty:
            if field.is_required and should_show(field, by_key):
                errors[field.field_key] = "this field is required"
            continue

        if field.has_options:
            allowed = {o.value: o for o in field.options}
            chosen = value if isinstance(value, list) else [value]
            if field.field_type != FieldType.CHECKBOX.value and isinstance(value, list):
                errors[field.field_key] = "only one option may be selected"
                continue
            unknown = [str(v) for v in chosen if str(v) not in allowed]
            if unknown:
                errors[field.field_key] = f"unknown option(s): {', '.join(unknown)}"
                continue
            needs_text = any(allowed[str(v)].requires_explanation for v in chosen)
            if needs_text and not (explanations.get(field.id) or "").strip():
                errors[field.field_key] = "an explanation is required for this answer"
        elif field.field_type == FieldType.NUMBER.value:
            try:
                float(value)
            except (TypeError, ValueError):
                errors[field.field_key] = "must be a number"

    if errors:
        raise AnswerValidationError(errors)


def create_submission(
    db: Session,
    template: FormTemplate,
    user_id: int,
    answers: Dict[int, Any],
    explanations: Optional[Dict[int, str]] = None,
    clock: Clock = utcnow,
) -> FormSubmission:
    """
    Validate, persist and score a submission.

    Answers start without a manual score; free-text answers are scored later
    by a consultant through `set_manual_score`.
    """
    explanations = explanations or {}
    validate_answers(template, answers, explanations)

    submission = FormSubmission(
        form_template_id=template.id,
        user_id=user_id,
        submitted_at=clock(),
    )
    db.add(submission)

    fields_by_id = {f.id: f for f in template.fields}
    for field_id, value in answers.items():
        submission.answers.append(FormSubmissionAnswer(
            field=fields_by_id[field_id],
            answer_value=value,
            explanation=explanations.get(field_id),
            risk_score=0,
        ))

    db.flush()
    score_submission(db, submission)
    return submission


# ============= TEMPLATE LIFECYCLE =============

def slugify(text: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (text or "").lower()).strip("-")
    return slug or "form"


def unique_slug(db: Session, name: str) -> str:
    base = slugify(name)
    slug, n = base, 2
    while db.query(FormTemplate.id).filter(FormTemplate.slug == slug).first():
        slug = f"{base}-{n}"
        n += 1
    return slug


def get_default_template(db: Session, category_id: Optional[int] = None) -> Optional[FormTemplate]:
    """Active default template for a category, falling back to the uncategorised default."""
    query = db.query(FormTemplate).filter(
        FormTemplate.is_active == True,
        FormTemplate.is_default == True,
        FormTemplate.deleted_at.is_(None),
    )
    if category_id is not None:
        template = query.filter(FormTemplate.category_id == category_id).first()
        if template:
            return template
    return query.filter(FormTemplate.category_id.is_(None)).first()


def _record(db: Session, action: str, template: FormTemplate, user_id: Optional[int], details: dict):
    db.add(AuditLog(
        user_id=user_id,
        action=action,
        entity_type="form_template",
        entity_id=template.id,
        details=details,
    ))
    audit_logger.log(action, user_id=user_id, entity_type="form_template",
                     entity_id=template.id, details=details)


def clear_other_defaults(db: Session, template: FormTemplate) -> int:
    """Drop the default flag from the rest of the template's category. Does not commit."""
    if not template.is_default or template.category_id is None:
        return 0
    cleared = db.query(FormTemplate).filter(
        FormTemplate.category_id == template.category_id,
        FormTemplate.id != template.id,
        FormTemplate.is_default == True,
    ).update({FormTemplate.is_default: False}, synchronize_session="fetch")
    if cleared:
        logger.info(f"Cleared default flag on {cleared} template(s) in category {template.category_id}")
    return cleared


def activate_template(db: Session, template: FormTemplate, user_id: Optional[int] = None) -> FormTemplate:
    """
    Activate a template.

    When it is the default of a category, every other template of that
    category loses its default flag in the same transaction.
    """
    clear_other_defaults(db, template)
    template.is_active = True
    _record(db, "FORM_TEMPLATE_ACTIVATED", template, user_id, {
        "category_id": template.category_id,
        "is_default": bool(template.is_default),
    })
    db.commit()
    db.refresh(template)
    return template


def deactivate_template(db: Session, template: FormTemplate, user_id: Optional[int] = None) -> FormTemplate:
    template.is_active = False
    _record(db, "FORM_TEMPLATE_DEACTIVATED", template, user_id, {})
    db.commit()
    db.refresh(template)
    return template


def duplicate_template(db: Session, template: FormTemplate, user_id: Optional[int] = None) -> FormTemplate:
    """Deep copy a template with its fields and options; the copy starts inactive."""
    name = f"{template.name} (Copy)"
    copy = FormTemplate(
        name=name,
        slug=unique_slug(db, name),
        description=template.description,
        type=template.type,
        category_id=template.category_id,
        is_active=False,
        is_default=False,
        version=1,
        settings=dict(template.settings or {}),
        created_by=user_id if user_id is not None else template.created_by,
    )
    for field in template.fields:
        field_copy = FormField(
            field_key=field.field_key,
            label=field.label,
            help_text=field.help_text,
            field_type=field.field_type,
            validation_rules=list(field.validation_rules or []),
            is_required=field.is_required,
            is_core_field=field.is_core_field,
            order=field.order,
            risk_weight=field.risk_weight,
            conditional_logic=dict(field.conditional_logic) if field.conditional_logic else None,
        )
        for option in field.options:
            field_copy.options.append(FormFieldOption(
                label=option.label,
                value=option.value,
                risk_score=option.risk_score,
                order=option.order,
                requires_explanation=option.requires_explanation,
                extra_data=dict(option.extra_data or {}),
            ))
        copy.fields.append(field_copy)

    db.add(copy)
    db.flush()
    _record(db, "FORM_TEMPLATE_DUPLICATED", copy, user_id, {"source_template_id": template.id})
    db.commit()
    db.refresh(copy)
    return copy


def delete_template(db: Session, template: FormTemplate, user_id: Optional[int] = None, clock: Clock = utcnow):
    """Soft delete; refused once the template has submissions."""
    has_submissions = db.query(FormSubmission.id).filter(
        FormSubmission.form_template_id == template.id
    ).first()
    if has_submissions:
        raise TemplateInUseError("Cannot delete a template that already has submissions")

    template.deleted_at = clock()
    template.is_active = False
    template.is_default = False
    _record(db, "FORM_TEMPLATE_DELETED", template, user_id, {})
    db.commit()


# ============= FIELDS =============

def _validated_logic(conditional_logic: Optional[dict]) -> Optional[dict]:
    rule = ConditionalRule.load(conditional_logic)
    return rule.model_dump(mode="json") if rule else None


def add_field(db: Session, template: FormTemplate, data: dict, options: Iterable[dict] = (),
              commit: bool = True) -> FormField:
    if any(f.field_key == data["field_key"] for f in template.fields):
        raise FormEngineError(f"Field key '{data['field_key']}' already exists in this template")

    data = dict(data)
    data["conditional_logic"] = _validated_logic(data.get("conditional_logic"))
    if data.get("order") is None:
        data["order"] = max((f.order or 0 for f in template.fields), default=0) + 1

    field = FormField(**data)
    for option in options:
        field.options.append(FormFieldOption(**option))
    template.fields.append(field)
    if commit:
        db.commit()
        db.refresh(field)
    else:
        db.flush()
    return field


def update_field(db: Session, field: FormField, changes: dict) -> FormField:
    if "conditional_logic" in changes:
        changes = dict(changes)
        changes["conditional_logic"] = _validated_logic(changes["conditional_logic"])
    for key, value in changes.items():
        setattr(field, key, value)
    db.commit()
    db.refresh(field)
    return field


def delete_field(db: Session, field: FormField) -> None:
    if field.is_core_field:
        raise CoreFieldProtectedError("Core fields cannot be deleted")
    has_answers = db.query(FormSubmissionAnswer.id).filter(
        FormSubmissionAnswer.form_field_id == field.id
    ).first()
    if has_answers:
        raise TemplateInUseError("Cannot delete a field that already has answers")
    db.delete(field)
    db.commit()


def reorder_fields(db: Session, template: FormTemplate, ordering: List[Dict[str, int]]) -> List[FormField]:
    """Apply [{"id": field_id, "order": n}, ...] to fields of this template."""
    fields_by_id = {f.id: f for f in template.fields}
    missing = [item["id"] for item in ordering if item["id"] not in fields_by_id]
    if missing:
        raise FormEngineError(f"Fields {missing} do not belong to template {template.id}")

    for item in ordering:
        fields_by_id[item["id"]].order = item["order"]
    db.commit()
    db.refresh(template)
    return list(template.fields)
