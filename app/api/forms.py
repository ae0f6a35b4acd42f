"""
Form template API routes (admin management plus the public default-form lookup).
"""
from typing import Any, List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status, Query
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import FieldType, FormField, FormTemplate
from app.core.rbac import require_admin, get_current_user_context
from app.services import form_engine
from app.services.form_engine import (
    CoreFieldProtectedError, FormEngineError, InvalidConditionalRuleError, TemplateInUseError,
)

router = APIRouter(prefix="/api/admin/forms", tags=["Form Templates"])
public_router = APIRouter(prefix="/api/forms", tags=["Forms"])


# ============= SCHEMAS =============

class OptionIn(BaseModel):
    label: str
    value: str
    risk_score: int = Field(0, ge=0, le=10)
    order: int = 0
    requires_explanation: bool = False
    metadata: Optional[dict] = None


class OptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    label: str
    value: str
    risk_score: int
    order: int
    requires_explanation: bool
    metadata: Optional[dict] = Field(None, validation_alias=AliasChoices("extra_data", "metadata"))


class FieldIn(BaseModel):
    field_key: str = Field(..., pattern=r"^[a-z0-9_]+$", max_length=100)
    label: str
    help_text: Optional[str] = None
    field_type: FieldType = FieldType.TEXT
    validation_rules: List[Any] = []
    is_required: bool = False
    is_core_field: bool = False
    order: Optional[int] = None
    risk_weight: int = Field(0, ge=0)
    conditional_logic: Optional[dict] = None
    options: List[OptionIn] = []


class FieldUpdate(BaseModel):
    label: Optional[str] = None
    help_text: Optional[str] = None
    validation_rules: Optional[List[Any]] = None
    is_required: Optional[bool] = None
    order: Optional[int] = None
    risk_weight: Optional[int] = Field(None, ge=0)
    conditional_logic: Optional[dict] = None


class FieldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    field_key: str
    label: str
    help_text: Optional[str]
    field_type: str
    validation_rules: Optional[List[Any]]
    is_required: bool
    is_core_field: bool
    order: int
    risk_weight: int
    conditional_logic: Optional[dict]
    options: List[OptionResponse] = []


class TemplateCreate(BaseModel):
    name: str = Field(..., max_length=255)
    description: Optional[str] = None
    type: str = Field("screening", pattern="^(screening|survey|assessment)$")
    category_id: Optional[int] = None
    is_default: bool = False
    settings: Optional[dict] = None
    fields: List[FieldIn] = []


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None
    category_id: Optional[int] = None
    is_default: Optional[bool] = None
    settings: Optional[dict] = None


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    slug: str
    description: Optional[str]
    type: Optional[str]
    category_id: Optional[int]
    is_active: bool
    is_default: bool
    version: int
    settings: Optional[dict]
    created_at: Optional[datetime]
    fields: List[FieldResponse] = []


class ReorderItem(BaseModel):
    id: int
    order: int


# ============= HELPERS =============

def get_template_or_404(db: Session, template_id: int) -> FormTemplate:
    template = db.query(FormTemplate).filter(
        FormTemplate.id == template_id,
        FormTemplate.deleted_at.is_(None),
    ).first()
    if not template:
        raise HTTPException(status_code=404, detail="Form template not found")
    return template


def get_field_or_404(db: Session, template: FormTemplate, field_id: int) -> FormField:
    field = db.query(FormField).filter(
        FormField.id == field_id,
        FormField.form_template_id == template.id,
    ).first()
    if not field:
        raise HTTPException(status_code=404, detail="Form field not found")
    return field


def field_payload(data: FieldIn) -> tuple:
    values = data.model_dump(exclude={"options"})
    values["field_type"] = data.field_type.value
    options = []
    for option in data.options:
        option_values = option.model_dump(exclude={"metadata"})
        option_values["extra_data"] = option.metadata or {}
        options.append(option_values)
    return values, options


def form_http_error(e: FormEngineError) -> HTTPException:
    if isinstance(e, (TemplateInUseError, CoreFieldProtectedError)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    if isinstance(e, InvalidConditionalRuleError):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


# ============= TEMPLATE ROUTES =============

@router.get("", response_model=List[TemplateResponse])
async def list_templates(
    category_id: Optional[int] = Query(None, description="Filter by category"),
    active_only: bool = Query(False, description="Show only active templates"),
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    query = db.query(FormTemplate).filter(FormTemplate.deleted_at.is_(None))
    if category_id is not None:
        query = query.filter(FormTemplate.category_id == category_id)
    if active_only:
        query = query.filter(FormTemplate.is_active == True)
    return query.order_by(FormTemplate.id).all()


@router.post("", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def create_template(
    data: TemplateCreate,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Create an inactive template; activate it separately."""
    template = FormTemplate(
        name=data.name,
        slug=form_engine.unique_slug(db, data.name),
        description=data.description,
        type=data.type,
        category_id=data.category_id,
        is_active=False,
        is_default=data.is_default,
        settings=data.settings or {},
        created_by=user_context["user_id"],
    )
    db.add(template)
    db.flush()

    try:
        for field_data in data.fields:
            values, options = field_payload(field_data)
            form_engine.add_field(db, template, values, options, commit=False)
    except FormEngineError as e:
        db.rollback()
        raise form_http_error(e)

    db.commit()
    db.refresh(template)
    return template


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(
    template_id: int,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    return get_template_or_404(db, template_id)


@router.put("/{template_id}", response_model=TemplateResponse)
async def update_template(
    template_id: int,
    data: TemplateUpdate,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    template = get_template_or_404(db, template_id)
    for key, value in data.model_dump(exclude_unset=True).items():
        setattr(template, key, value)
    template.version = (template.version or 1) + 1
    # One default per category
    if template.is_active:
        form_engine.clear_other_defaults(db, template)
    db.commit()
    db.refresh(template)
    return template


@router.delete("/{template_id}")
async def delete_template(
    template_id: int,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    template = get_template_or_404(db, template_id)
    try:
        form_engine.delete_template(db, template, user_id=user_context["user_id"])
    except FormEngineError as e:
        raise form_http_error(e)
    return {"message": "Form template deleted"}


@router.post("/{template_id}/activate", response_model=TemplateResponse)
async def activate_template(
    template_id: int,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    template = get_template_or_404(db, template_id)
    return form_engine.activate_template(db, template, user_id=user_context["user_id"])


@router.post("/{template_id}/deactivate", response_model=TemplateResponse)
async def deactivate_template(
    template_id: int,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    template = get_template_or_404(db, template_id)
    return form_engine.deactivate_template(db, template, user_id=user_context["user_id"])


@router.post("/{template_id}/duplicate", response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
async def duplicate_template(
    template_id: int,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    template = get_template_or_404(db, template_id)
    return form_engine.duplicate_template(db, template, user_id=user_context["user_id"])


# ============= FIELD ROUTES =============

@router.post("/{template_id}/fields", response_model=FieldResponse, status_code=status.HTTP_201_CREATED)
async def create_field(
    template_id: int,
    data: FieldIn,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    template = get_template_or_404(db, template_id)
    values, options = field_payload(data)
    try:
        return form_engine.add_field(db, template, values, options)
    except FormEngineError as e:
        raise form_http_error(e)


@router.put("/{template_id}/fields/reorder", response_model=List[FieldResponse])
async def reorder_fields(
    template_id: int,
    items: List[ReorderItem],
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    template = get_template_or_404(db, template_id)
    try:
        return form_engine.reorder_fields(db, template, [item.model_dump() for item in items])
    except FormEngineError as e:
        raise form_http_error(e)


@router.put("/{template_id}/fields/{field_id}", response_model=FieldResponse)
async def update_field(
    template_id: int,
    field_id: int,
    data: FieldUpdate,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    template = get_template_or_404(db, template_id)
    field = get_field_or_404(db, template, field_id)
    try:
        return form_engine.update_field(db, field, data.model_dump(exclude_unset=True))
    except FormEngineError as e:
        raise form_http_error(e)


@router.delete("/{template_id}/fields/{field_id}")
async def delete_field(
    template_id: int,
    field_id: int,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    template = get_template_or_404(db, template_id)
    field = get_field_or_404(db, template, field_id)
    try:
        form_engine.delete_field(db, field)
    except FormEngineError as e:
        raise form_http_error(e)
    return {"message": "Form field deleted"}


# ============= PUBLIC ROUTES =============

@public_router.get("/default", response_model=TemplateResponse)
async def get_default_form(
    category_id: Optional[int] = Query(None, description="Consultation category"),
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """Default active screening form for a category."""
    template = form_engine.get_default_template(db, category_id)
    if not template:
        raise HTTPException(status_code=404, detail="No default form configured")
    return template
