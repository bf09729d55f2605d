"""
Projects Processor

Projects mirror upstream opportunities. Every change after creation is recorded
as an entry on the project's append-only timeline.
"""

from typing import Any, Dict, Optional

from loguru import logger

from src.models.base import utcnow
from src.models.entities import TimelineEntry
from src.models.events import OpportunityEvent
from src.models.work_item import QueueType, WorkItem
from src.processors.base import BaseProcessor
from src.processors.context import ProcessorContext
from src.realtime.notifier import DedupKey
from src.realtime.publisher import location_channel, user_channel
from src.repositories import filters
from src.repositories.base import UpsertResult

# Event field name -> project document field
UPDATE_FIELD_MAP = {
    "name": "title",
    "status": "status",
    "monetaryValue": "monetaryValue",
    "pipelineId": "pipelineId",
    "pipelineName": "pipelineName",
    "pipelineStageId": "pipelineStageId",
    "pipelineStageName": "pipelineStageName",
    "assignedTo": "assignedTo",
    "source": "source",
    "tags": "tags",
    "customFields": "customFields",
    "notes": "notes",
}


class ProjectsProcessor(BaseProcessor):

    queue_type = QueueType.PROJECTS
    batch_size = 50

    def __init__(self, ctx: ProcessorContext, **kwargs):
        super().__init__(ctx, **kwargs)
        self.handlers = {
            "OpportunityCreate": self.opportunity_create,
            "OpportunityUpdate": self.opportunity_update,
            "OpportunityDelete": self.opportunity_delete,
            "OpportunityStatusUpdate": self.opportunity_status_update,
            "OpportunityStageUpdate": self.opportunity_stage_update,
            "OpportunityMonetaryValueUpdate": self.opportunity_value_update,
            "OpportunityAssignedToUpdate": self.opportunity_assigned_update,
        }

    async def opportunity_create(self, item: WorkItem) -> None:
        event = OpportunityEvent.from_payload(item.payload, item.location_id)
        result = await self._upsert_project(event, item)
        await self._notify_created(event, result)

    async def opportunity_update(self, item: WorkItem) -> None:
        """Apply the fields the payload carries; create the project if unknown."""
        event = OpportunityEvent.from_payload(item.payload, item.location_id)

        changes: Dict[str, Any] = {}
        for field, value in event.present_fields().items():
            target = UPDATE_FIELD_MAP.get(field)
            if target is not None:
                changes[target] = value
        if "status" in changes:
            changes["status"] = event.project_status

        matched = await self._record_change(
            event, item, changes,
            TimelineEntry(
                event="project_updated",
                description="Project details updated",
                metadata={"webhookId": item.webhook_id, "changes": sorted(changes)},
            )
        )
        if not matched:
            return

        await self.ctx.notifier.publish(
            location_channel(event.location_id),
            "projects.changed",
            {"action": "updated", "ghlOpportunityId": event.id, "changes": sorted(changes), "timestamp": utcnow()},
            dedup=DedupKey(event.id, "project-updated"),
        )

    async def opportunity_status_update(self, item: WorkItem) -> None:
        event = OpportunityEvent.from_payload(item.payload, item.location_id)
        status = event.project_status

        await self._record_change(
            event, item, {"status": status},
            TimelineEntry(
                event="status_changed",
                description=f"Status changed to {status}",
                metadata={"webhookId": item.webhook_id, "previousStatus": event.previous_status, "newStatus": status},
            )
        )

    async def opportunity_stage_update(self, item: WorkItem) -> None:
        event = OpportunityEvent.from_payload(item.payload, item.location_id)

        changes = {"pipelineStageId": event.pipeline_stage_id}
        if event.pipeline_id:
            changes["pipelineId"] = event.pipeline_id
        if event.pipeline_stage_name:
            changes["pipelineStageName"] = event.pipeline_stage_name

        await self._record_change(
            event, item, changes,
            TimelineEntry(
                event="stage_changed",
                description=f"Moved to stage: {event.pipeline_stage_name or 'Unknown'}",
                metadata={
                    "webhookId": item.webhook_id,
                    "previousStageId": event.previous_stage_id,
                    "newStageId": event.pipeline_stage_id,
                },
            )
        )
        await self.ctx.notifier.trigger(
            item.webhook_id,
            "stage-entered",
            "project",
            event.location_id,
            {
                "ghlOpportunityId": event.id,
                "newStage": event.pipeline_stage_id,
                "oldStage": event.previous_stage_id,
                "pipelineId": event.pipeline_id,
            },
        )

    async def opportunity_value_update(self, item: WorkItem) -> None:
        event = OpportunityEvent.from_payload(item.payload, item.location_id)
        value = event.monetary_value or 0

        await self._record_change(
            event, item, {"monetaryValue": value},
            TimelineEntry(
                event="value_changed",
                description=f"Value updated to ${value:,.2f}",
                metadata={"webhookId": item.webhook_id, "previousValue": event.previous_value, "newValue": value},
            )
        )

    async def opportunity_assigned_update(self, item: WorkItem) -> None:
        event = OpportunityEvent.from_payload(item.payload, item.location_id)

        matched = await self._record_change(
            event, item, {"assignedTo": event.assigned_to},
            TimelineEntry(
                event="assignment_changed",
                description="Assigned to user",
                metadata={
                    "webhookId": item.webhook_id,
                    "previousAssignee": event.previous_assignee,
                    "newAssignee": event.assigned_to,
                },
            )
        )
        if matched and event.assigned_to and event.assigned_to != event.previous_assignee:
            project = await self.ctx.repos.projects.get_by_opportunity(event.id, event.location_id)
            await self.ctx.notifier.push(
                event.assigned_to,
                "Project Assigned",
                f"{event.name or (project.title if project else None) or 'A project'} has been assigned to you",
                {"type": "project", "projectId": project.id if project else None, "action": "view_project"},
            )

    async def opportunity_delete(self, item: WorkItem) -> None:
        event = OpportunityEvent.from_payload(item.payload, item.location_id)
        key = filters.project(event.id, event.location_id)

        matched = await self.ctx.repos.projects.soft_delete(
            key,
            {"status": "deleted", "deletedByWebhook": item.webhook_id, **self._stamp(item)}
        )
        if not matched:
            logger.info(f"Project for opportunity {event.id} already absent, nothing to delete")
            return

        await self.ctx.repos.projects.append_timeline(
            key,
            TimelineEntry(
                event="project_deleted",
                description="Project deleted via webhook",
                metadata={"webhookId": item.webhook_id, "deletedBy": "system"},
            ),
            unique_on={"event": "project_deleted"},
        )
        await self.ctx.notifier.publish(
            location_channel(event.location_id),
            "projects.changed",
            {"action": "deleted", "ghlOpportunityId": event.id, "timestamp": utcnow()},
        )

    # ============================================
    # HELPERS
    # ============================================

    @staticmethod
    def _stamp(item: WorkItem) -> Dict[str, Any]:
        return {"lastWebhookUpdate": utcnow(), "processedBy": "queue", "webhookId": item.webhook_id}

    async def _record_change(
        self,
        event: OpportunityEvent,
        item: WorkItem,
        changes: Dict[str, Any],
        entry: TimelineEntry,
    ) -> bool:
        """
        Apply `changes` and append `entry` in one update.

        Returns:
            True if the project existed; False if it was created instead
        """
        matched = await self.ctx.repos.projects.append_timeline(
            filters.project(event.id, event.location_id),
            entry,
            {**changes, **self._stamp(item)},
            unique_on={"event": entry.event, "metadata.webhookId": item.webhook_id},
        )
        if matched:
            return True

        logger.info(f"Project for opportunity {event.id} not found, creating it")
        result = await self._upsert_project(event, item)
        await self._notify_created(event, result)
        return False

    async def _upsert_project(self, event: OpportunityEvent, item: WorkItem) -> UpsertResult:
        contact_id = await self.ctx.repos.contacts.resolve_id(event.contact_id, event.location_id)

        return await self.ctx.repos.projects.upsert(
            filters.project(event.id, event.location_id),
            {
                "contactId": contact_id,
                "ghlContactId": event.contact_id,
                "title": event.name or "Untitled Project",
                "status": event.project_status,
                "monetaryValue": event.monetary_value or 0,
                "pipelineId": event.pipeline_id,
                "pipelineName": event.pipeline_name,
                "pipelineStageId": event.pipeline_stage_id,
                "pipelineStageName": event.pipeline_stage_name,
                "assignedTo": event.assigned_to,
                "source": event.source or "webhook",
                "tags": event.tags or [],
                "customFields": event.custom_fields or {},
                "notes": event.notes or "",
                **self._stamp(item),
            },
            {
                "createdByWebhook": item.webhook_id,
                "timeline": [
                    TimelineEntry(
                        event="project_created",
                        description="Project created from opportunity",
                        metadata={"webhookId": item.webhook_id},
                    ).to_document()
                ],
            },
        )

    async def _notify_created(self, event: OpportunityEvent, result: UpsertResult) -> None:
        project: Dict[str, Optional[str]] = {
            "_id": result.document_id,
            "title": event.name or "Untitled Project",
            "assignedTo": event.assigned_to,
        }

        if event.assigned_to:
            await self.ctx.notifier.publish(
                user_channel(event.assigned_to),
                "project-created",
                {"project": project, "timestamp": utcnow()},
            )
            await self.ctx.notifier.push(
                event.assigned_to,
                "New Project Assigned",
                f"{event.name or 'New project'} has been assigned to you",
                {"type": "project", "projectId": result.document_id, "action": "view_project"},
            )

        await self.ctx.notifier.publish(
            location_channel(event.location_id),
            "projects.changed",
            {"action": "created" if result.created else "updated", "projectId": result.document_id, "timestamp": utcnow()},
            dedup=DedupKey(event.id, "project-created" if result.created else "project-updated"),
        )
