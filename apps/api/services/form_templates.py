"""
Form Template Service

CRUD and lifecycle for admin-defined form templates:
- Create/update with structural validation
- Versioning: structural edits bump the version; a template that already
  has entries is archived and replaced by a new template instead, so old
  entries keep pointing at the structure they were answered against
- One active template per sport
- Archive/restore, clone, usage counting
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.cache import JsonCache, cache_key
from core.exceptions import ConflictError, NotFoundError, ValidationError
from services.document_store import DocumentStore, Filter
from services.form_schema import (
    FormTemplate,
    is_structural_change,
    template_from_document,
    template_to_document,
    validate_template,
)

logger = logging.getLogger(__name__)

TEMPLATES_COLLECTION = "form_templates"
CACHE_PREFIX = "form_template"


def _now() -> datetime:
    return datetime.now(timezone.utc)


class FormTemplateService:
    def __init__(self, store: DocumentStore, cache: Optional[JsonCache] = None, cache_ttl: int = 600):
        self.store = store
        self.cache = cache or JsonCache()
        self.cache_ttl = cache_ttl

    # ==================== HELPERS ====================

    def _ensure_valid(self, template: FormTemplate) -> None:
        result = validate_template(template)
        if not result.is_valid:
            raise ValidationError(
                "Template validation failed: " + ", ".join(e.message for e in result.errors),
                errors=[e.model_dump() for e in result.errors],
            )

    def _save(self, template: FormTemplate) -> FormTemplate:
        document = template_to_document(template)
        self.store.update(TEMPLATES_COLLECTION, template.id, document)
        self.cache.delete(cache_key(CACHE_PREFIX, template.id))
        return template

    def _patch(self, template_id: str, patch: Dict[str, Any]) -> FormTemplate:
        template = self.get_template(template_id)
        updated = template.model_copy(update={**patch, "updated_at": _now()})
        return self._save(updated)

    # ==================== CRUD ====================

    def create_template(self, template: FormTemplate, created_by: Optional[str] = None) -> FormTemplate:
        self._ensure_valid(template)
        now = _now()
        new = template.model_copy(update={
            "id": None,
            "version": 1,
            "is_archived": False,
            "usage_count": 0,
            "created_by": created_by or template.created_by,
            "last_modified_by": created_by or template.created_by,
            "created_at": now,
            "updated_at": now,
        })
        if new.is_active:
            self._deactivate_others(new.sport)
        new_id = self.store.create(TEMPLATES_COLLECTION, template_to_document(new))
        new = new.model_copy(update={"id": new_id})
        logger.info(
            f"Form template created: {new_id}",
            extra={"extra_fields": {"template_id": new_id, "name": new.name, "sport": new.sport}},
        )
        return new

    def get_template(self, template_id: str) -> FormTemplate:
        key = cache_key(CACHE_PREFIX, template_id)
        cached = self.cache.get(key)
        if cached is not None:
            return template_from_document(cached, template_id)

        document = self.store.get(TEMPLATES_COLLECTION, template_id)
        if document is None:
            raise NotFoundError("Form template", template_id)
        template = template_from_document(document, template_id)
        self.cache.set(key, template_to_document(template), self.cache_ttl)
        return template

    def update_template(
        self,
        template_id: str,
        changes: Dict[str, Any],
        modified_by: Optional[str] = None,
    ) -> FormTemplate:
        """
        Apply changes (snake_case field names).

        Returns the updated template, which has a new id when a structural
        change was made to a template that already has entries.
        """
        current = self.get_template(template_id)
        protected = {"id", "version", "usage_count", "created_at", "created_by"}
        merged = {**current.model_dump(), **{k: v for k, v in changes.items() if k not in protected}}
        candidate = FormTemplate.model_validate(merged)
        self._ensure_valid(candidate)

        structural = is_structural_change(current, candidate)
        if structural and current.usage_count > 0:
            self.archive_template(template_id)
            created = self.create_template(candidate, created_by=current.created_by)
            created = self._patch(created.id, {"version": current.version + 1, "last_modified_by": modified_by})
            logger.info(
                f"Template {template_id} is in use; created version {created.version} as {created.id}",
                extra={"extra_fields": {"template_id": template_id, "new_template_id": created.id}},
            )
            return created

        if candidate.is_active and not current.is_active:
            self._deactivate_others(candidate.sport, except_id=template_id)

        updated = candidate.model_copy(update={
            "version": current.version + 1 if structural else current.version,
            "last_modified_by": modified_by,
            "updated_at": _now(),
        })
        self._save(updated)
        logger.info(f"Form template updated: {template_id} (structural={structural})")
        return updated

    def delete_template(self, template_id: str) -> None:
        """Hard delete; only allowed while the template has no entries."""
        template = self.get_template(template_id)
        if template.usage_count > 0:
            raise ConflictError("Cannot delete template that is in use. Archive it instead.")
        self.store.delete(TEMPLATES_COLLECTION, template_id)
        self.cache.delete(cache_key(CACHE_PREFIX, template_id))
        logger.info(f"Form template deleted: {template_id}")

    def archive_template(self, template_id: str) -> FormTemplate:
        return self._patch(template_id, {"is_archived": True, "is_active": False})

    def restore_template(self, template_id: str) -> FormTemplate:
        return self._patch(template_id, {"is_archived": False})

    def clone_template(self, template_id: str, new_name: str, created_by: Optional[str] = None) -> FormTemplate:
        original = self.get_template(template_id)
        clone = original.model_copy(update={"name": new_name, "is_active": False, "is_archived": False})
        return self.create_template(clone, created_by=created_by)

    # ==================== QUERIES ====================

    def list_templates(
        self,
        is_active: Optional[bool] = None,
        is_archived: Optional[bool] = None,
        created_by: Optional[str] = None,
        sport: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[FormTemplate]:
        filters = []
        if sport is not None:
            filters.append(Filter("sport", "==", sport))
        if is_active is not None:
            filters.append(Filter("isActive", "==", is_active))
        if is_archived is not None:
            filters.append(Filter("isArchived", "==", is_archived))
        if created_by:
            filters.append(Filter("createdBy", "==", created_by))

        documents = self.store.query(
            TEMPLATES_COLLECTION, filters, order_by="createdAt", descending=True, limit=limit
        )
        return [template_from_document(doc) for doc in documents]

    def get_active_template(self, sport: Optional[str] = None) -> Optional[FormTemplate]:
        templates = self.list_templates(is_active=True, is_archived=False, sport=sport, limit=1)
        return templates[0] if templates else None

    # ==================== ACTIVATION ====================

    def activate_template(self, template_id: str, sport: Optional[str] = None) -> FormTemplate:
        """Make this the active template for its sport, deactivating the others."""
        template = self.get_template(template_id)
        if template.is_archived:
            raise ValidationError("Archived templates cannot be activated; restore it first")
        target_sport = sport or template.sport
        self._deactivate_others(target_sport, except_id=template_id)
        return self._patch(template_id, {"is_active": True, "sport": target_sport})

    def _deactivate_others(self, sport: Optional[str], except_id: Optional[str] = None) -> None:
        active = self.store.query(
            TEMPLATES_COLLECTION, [Filter("isActive", "==", True), Filter("sport", "==", sport)]
        )
        for document in active:
            if document["id"] != except_id:
                self._patch(document["id"], {"is_active": False})

    def increment_usage(self, template_id: str) -> None:
        template = self.get_template(template_id)
        self.store.update(TEMPLATES_COLLECTION, template_id, {"usageCount": template.usage_count + 1})
        self.cache.delete(cache_key(CACHE_PREFIX, template_id))
