import json
import uuid
from datetime import datetime
from typing import Optional, Union

from fastapi import APIRouter, Body, Depends, HTTPException
from fastapi.responses import Response
from slugify import slugify
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth.security import get_current_user
from ..db import get_db
from ..models.models import ProjectTemplate, User
from ..schemas.templates import TemplateBundle, TemplateCreate, TemplateUpdate
from ..services.templates import (
    EXPORT_VERSION,
    export_template,
    make_default,
    replace_children,
    serialize_template,
)


router = APIRouter(prefix="/templates", tags=["templates"])


def _template_or_404(db: Session, template_id: uuid.UUID) -> ProjectTemplate:
    template = db.query(ProjectTemplate).filter(ProjectTemplate.id == template_id).first()
    if template is None:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


def _json_download(payload: dict, file_name: str) -> Response:
    return Response(
        content=json.dumps(payload, indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


@router.get("")
def list_templates(db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    templates = db.query(ProjectTemplate).order_by(ProjectTemplate.is_default.desc(), ProjectTemplate.name.asc()).all()
    return {"templates": [serialize_template(t) for t in templates]}


@router.post("", status_code=201)
def create_template(payload: TemplateCreate, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    if db.query(ProjectTemplate.id).filter(ProjectTemplate.name == payload.name).first():
        raise HTTPException(status_code=400, detail="Template with this name already exists")
    template = ProjectTemplate(name=payload.name, description=payload.description, is_default=False)
    try:
        db.add(template)
        db.flush()
        replace_children(db, template, payload.milestones)
        if payload.is_default:
            make_default(db, template)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="Template with this name already exists")
    db.refresh(template)
    return {"template": serialize_template(template)}


@router.get("/export")
def export_templates(id: Optional[uuid.UUID] = None, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    if id is not None:
        template = _template_or_404(db, id)
        return _json_download(export_template(template), f"template-{slugify(template.name) or 'export'}.json")
    templates = db.query(ProjectTemplate).order_by(ProjectTemplate.name.asc()).all()
    now = datetime.utcnow()
    bundle = {
        "version": EXPORT_VERSION,
        "exportedAt": now.isoformat() + "Z",
        "templates": [export_template(t) for t in templates],
    }
    return _json_download(bundle, f"templates-export-{now.strftime('%Y-%m-%d')}.json")


@router.post("/import")
def import_templates(
    payload: Union[TemplateBundle, TemplateCreate] = Body(...),
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    """Upsert by name; the whole import is one transaction."""
    incoming = payload.templates if isinstance(payload, TemplateBundle) else [payload]
    if not incoming:
        raise HTTPException(status_code=400, detail="No templates to import")
    imported = updated = 0
    errors = []
    seen = set()
    try:
        for entry in incoming:
            if entry.name in seen:
                errors.append(f'Template "{entry.name}": duplicate in import file, skipped')
                continue
            seen.add(entry.name)
            template = db.query(ProjectTemplate).filter(ProjectTemplate.name == entry.name).first()
            if template is None:
                template = ProjectTemplate(name=entry.name, description=entry.description, is_default=False)
                db.add(template)
                db.flush()
                imported += 1
            else:
                template.description = entry.description
                updated += 1
            replace_children(db, template, entry.milestones)
            if entry.is_default:
                make_default(db, template)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="Import failed; no templates were changed")
    return {"success": True, "imported": imported, "updated": updated, "errors": errors}


@router.get("/{template_id}")
def get_template(template_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    return {"template": serialize_template(_template_or_404(db, template_id))}


@router.put("/{template_id}")
def update_template(
    template_id: uuid.UUID,
    payload: TemplateUpdate,
    db: Session = Depends(get_db),
    _: User = Depends(get_current_user),
):
    template = _template_or_404(db, template_id)
    data = payload.model_dump(exclude_unset=True)
    if "name" in data:
        if data["name"] is None:
            raise HTTPException(status_code=400, detail="name is required")
        clash = db.query(ProjectTemplate.id).filter(
            ProjectTemplate.name == data["name"], ProjectTemplate.id != template.id
        ).first()
        if clash:
            raise HTTPException(status_code=400, detail="Template with this name already exists")
        template.name = data["name"]
    if "description" in data:
        template.description = data["description"]
    try:
        if payload.milestones is not None:
            replace_children(db, template, payload.milestones)
        if data.get("is_default") is True:
            make_default(db, template)
        elif data.get("is_default") is False:
            template.is_default = False
        db.commit()
    except IntegrityError:
        db.rollback()
        raise HTTPException(status_code=400, detail="Template could not be updated")
    db.refresh(template)
    return {"template": serialize_template(template)}


@router.delete("/{template_id}")
def delete_template(template_id: uuid.UUID, db: Session = Depends(get_db), _: User = Depends(get_current_user)):
    template = _template_or_404(db, template_id)
    if template.is_default:
        raise HTTPException(status_code=400, detail="Cannot delete the default template")
    db.delete(template)
    db.commit()
    return {"success": True}
