"""
Project templates: serialization, child replacement and instantiation into a project.
"""
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..models.models import Milestone, Project, ProjectTemplate, Task, TemplateMilestone, TemplateTask
from ..schemas.common import iso
from ..schemas.templates import TemplateMilestoneIn


EXPORT_VERSION = "1.0"


def serialize_template(t: ProjectTemplate) -> Dict[str, Any]:
    return {
        "id": str(t.id),
        "name": t.name,
        "description": t.description,
        "is_default": bool(t.is_default),
        "milestones": [
            {
                "id": str(m.id),
                "name": m.name,
                "description": m.description,
                "category": m.category,
                "order": m.order,
                "tasks": [
                    {"id": str(tk.id), "name": tk.name, "description": tk.description, "order": tk.order}
                    for tk in m.tasks
                ],
            }
            for m in t.milestones
        ],
        "created_at": iso(t.created_at),
        "updated_at": iso(t.updated_at),
    }


def export_template(t: ProjectTemplate) -> Dict[str, Any]:
    """Interchange format; keys are part of the file format."""
    return {
        "name": t.name,
        "description": t.description,
        "isDefault": bool(t.is_default),
        "milestones": [
            {
                "name": m.name,
                "description": m.description,
                "category": m.category,
                "order": m.order,
                "tasks": [{"name": tk.name, "description": tk.description, "order": tk.order} for tk in m.tasks],
            }
            for m in t.milestones
        ],
    }


def replace_children(db: Session, template: ProjectTemplate, milestones: List[TemplateMilestoneIn]) -> None:
    """Drop the template's milestone/task tree and rebuild it. Caller owns the transaction."""
    template.milestones.clear()
    db.flush()
    for m_index, m in enumerate(milestones):
        milestone = TemplateMilestone(
            name=m.name,
            description=m.description,
            category=m.category,
            order=m.order if m.order is not None else m_index,
        )
        milestone.tasks = [
            TemplateTask(name=tk.name, description=tk.description, order=tk.order if tk.order is not None else t_index)
            for t_index, tk in enumerate(m.tasks)
        ]
        template.milestones.append(milestone)
    db.flush()


def make_default(db: Session, template: ProjectTemplate) -> None:
    db.query(ProjectTemplate).filter(ProjectTemplate.id != template.id, ProjectTemplate.is_default.is_(True)).update(
        {ProjectTemplate.is_default: False}, synchronize_session=False
    )
    template.is_default = True


def instantiate_template(db: Session, template: ProjectTemplate, project: Project) -> List[Milestone]:
    created = []
    for tm in template.milestones:
        milestone = Milestone(
            project=project,
            name=tm.name,
            description=tm.description,
            category=tm.category,
            status="PENDING",
            order=tm.order,
        )
        milestone.tasks = [
            Task(name=tt.name, description=tt.description, status="PENDING", order=tt.order) for tt in tm.tasks
        ]
        db.add(milestone)
        created.append(milestone)
    db.flush()
    return created


def find_template(db: Session, template_id: Optional[uuid.UUID]) -> Optional[ProjectTemplate]:
    if template_id is None:
        return None
    return db.query(ProjectTemplate).filter(ProjectTemplate.id == template_id).first()
