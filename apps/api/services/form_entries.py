"""
Form Entry Service

Stores student submissions against a form template. Completion is always
recomputed from the responses; client-supplied completion is ignored.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from core.exceptions import NotFoundError, ValidationError
from services.document_store import DocumentStore, Filter
from services.dynamic_analytics import FormEntry
from services.form_schema import FormResponses, calculate_completion, validate_responses
from services.form_templates import FormTemplateService

logger = logging.getLogger(__name__)

ENTRIES_COLLECTION = "form_entries"


class FormEntryService:
    def __init__(self, store: DocumentStore, templates: FormTemplateService):
        self.store = store
        self.templates = templates

    def submit_entry(
        self,
        student_id: str,
        template_id: str,
        responses: FormResponses,
        submitted_by: Optional[str] = None,
        submitter_role: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> FormEntry:
        template = self.templates.get_template(template_id)
        if template.is_archived:
            raise ValidationError(f"Form template {template_id} is archived")
        if not isinstance(responses, dict):
            raise ValidationError("responses must be an object keyed by section id")

        problems = validate_responses(template, responses)
        invalid = [p for p in problems if p.code != "required"]
        missing = [p for p in problems if p.code == "required"]
        if invalid or (missing and not template.allow_partial_submission):
            rejected = invalid + ([] if template.allow_partial_submission else missing)
            raise ValidationError(
                "Form responses failed validation",
                errors=[p.model_dump() for p in rejected],
            )

        completion = calculate_completion(template, responses)
        entry = FormEntry(
            id="",
            student_id=student_id,
            form_template_id=template_id,
            form_template_version=template.version,
            submitted_at=datetime.now(timezone.utc),
            responses=responses,
            is_complete=completion.is_complete,
            completion_percentage=completion.percentage,
            submitted_by=submitted_by or student_id,
            submitter_role=submitter_role,
            session_id=session_id,
        )
        entry.id = self.store.create(ENTRIES_COLLECTION, entry.to_document())
        self.templates.increment_usage(template_id)

        logger.info(
            f"Form entry submitted: {entry.id}",
            extra={"extra_fields": {
                "entry_id": entry.id,
                "student_id": student_id,
                "template_id": template_id,
                "completion": completion.percentage,
            }},
        )
        return entry

    def get_entry(self, entry_id: str) -> FormEntry:
        document = self.store.get(ENTRIES_COLLECTION, entry_id)
        entry = FormEntry.from_document(document, entry_id) if document else None
        if entry is None:
            raise NotFoundError("Form entry", entry_id)
        return entry

    def list_entry_documents(self, student_id: str, template_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """Raw stored entries, unreadable ones included."""
        filters = [Filter("studentId", "==", student_id)]
        if template_id:
            filters.append(Filter("formTemplateId", "==", template_id))
        return self.store.query(ENTRIES_COLLECTION, filters)

    def list_entries_for_student(self, student_id: str, template_id: Optional[str] = None) -> List[FormEntry]:
        """Readable entries, oldest first."""
        entries = []
        for document in self.list_entry_documents(student_id, template_id):
            entry = FormEntry.from_document(document)
            if entry is None:
                logger.warning(f"Skipping unreadable form entry {document.get('id')}")
                continue
            entries.append(entry)
        return sorted(entries, key=lambda e: e.submitted_at)

    def update_entry_responses(self, entry_id: str, responses: FormResponses) -> FormEntry:
        entry = self.get_entry(entry_id)
        template = self.templates.get_template(entry.form_template_id)
        completion = calculate_completion(template, responses)
        self.store.update(ENTRIES_COLLECTION, entry_id, {
            "responses": responses,
            "isComplete": completion.is_complete,
            "completionPercentage": completion.percentage,
        })
        entry.responses = responses
        entry.is_complete = completion.is_complete
        entry.completion_percentage = completion.percentage
        return entry

    def delete_entries_for_student(
        self,
        student_id: str,
        template_id: Optional[str] = None,
        dry_run: bool = False,
    ) -> int:
        """Delete a student's entries in store-sized chunks. Returns the count (or would-be count)."""
        ids = [doc["id"] for doc in self.list_entry_documents(student_id, template_id)]
        if dry_run:
            logger.info(f"[dry-run] would delete {len(ids)} entries for student {student_id}")
            return len(ids)
        deleted = self.store.batch_delete(ENTRIES_COLLECTION, ids)
        logger.info(
            f"Deleted {deleted} entries for student {student_id}",
            extra={"extra_fields": {"student_id": student_id, "template_id": template_id, "deleted": deleted}},
        )
        return deleted
