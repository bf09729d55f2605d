"""
Critical Processor

Account lifecycle events: install, uninstall, plan changes, new users and
external auth. These are routed at the highest priority and get more attempts
than any other queue type.
"""

import datetime as dt
import secrets
from typing import Any, Dict, List

from loguru import logger

from src.models.base import utcnow
from src.models.events import ExternalAuthEvent, InstallEvent, PlanChangeEvent, UninstallEvent, UserEvent
from src.models.work_item import QueueType, WorkItem, WorkItemStatus
from src.processors.base import BaseProcessor
from src.processors.context import ProcessorContext
from src.realtime.publisher import user_channel
from src.repositories import filters
from src.repositories.base import Session, as_object_id

# Location fields dropped on uninstall
UNINSTALL_UNSET_FIELDS = [
    "crmOAuth",
    "hasLocationOAuth",
    "hasCompanyOAuth",
    "installedAt",
    "installedBy",
    "installWebhookId",
    "installType",
    "installPlanId",
    "setupCompleted",
    "setupCompletedAt",
    "setupQueued",
    "setupQueuedAt",
    "lastSetupRun",
    "lastSetupWebhook",
    "setupResults",
    "syncProgress",
    "approvedViaCompany",
]

# Install-time derivative collections removed outright on uninstall
DERIVATIVE_COLLECTIONS = [
    "automation_rules",
    "automation_executions",
    "sms_templates",
    "email_templates",
    "pipelines",
    "calendars",
]

UNINSTALL_PROJECT_STATUSES = ["draft", "pending", "open", "quoted"]
FINISHED_APPOINTMENT_STATUSES = ["completed", "showed", "noshow", "no-show", "cancelled"]


class CriticalProcessor(BaseProcessor):

    queue_type = QueueType.CRITICAL
    batch_size = 10

    def __init__(self, ctx: ProcessorContext, **kwargs):
        super().__init__(ctx, **kwargs)
        self.handlers = {
            "INSTALL": self.install,
            "UNINSTALL": self.uninstall,
            "PLAN_CHANGE": self.plan_change,
            "UserCreate": self.user_create,
            "EXTERNAL_AUTH_CONNECTED": self.external_auth_connected,
        }

    # ============================================
    # INSTALL
    # ============================================

    async def install(self, item: WorkItem) -> None:
        event = InstallEvent.from_payload(item.payload, item.location_id)
        if event.is_location_install:
            await self._install_location(event, item)
        elif event.company_id:
            await self._install_company(event, item)
        else:
            logger.warning(
                f"Install {item.webhook_id} names neither a location nor a company",
                extra={"install_type": event.install_type}
            )

    async def _install_location(self, event: InstallEvent, item: WorkItem) -> None:
        location_id = event.location_id
        installed_at = event.timestamp or utcnow()

        async def apply(session: Session) -> None:
            await self.ctx.repos.locations.upsert_location(
                location_id,
                {
                    "appInstalled": True,
                    "installedAt": installed_at,
                    "installedBy": event.user_id,
                    "installWebhookId": item.webhook_id,
                    "installPlanId": event.plan_id,
                    "companyId": event.company_id,
                    "companyName": event.company_name,
                },
                session=session,
            )
            await self.ctx.repos.locations.update_location(
                location_id,
                unset=["uninstalledAt", "uninstalledBy", "uninstallReason", "uninstallWebhookId"],
                session=session,
            )
            await self.ctx.repos.archive.append("app_events", {
                "type": "install",
                "entityType": "location",
                "entityId": location_id,
                "companyId": event.company_id,
                "userId": event.user_id,
                "planId": event.plan_id,
                "webhookId": item.webhook_id,
                "timestamp": installed_at,
                "metadata": {"companyName": event.company_name, "installType": "location"},
            }, session=session)

        await self.ctx.transactions.run(apply)
        await self._queue_location_setup(location_id, item.webhook_id)
        logger.info(f"Location {location_id} installed", extra={"webhook_id": item.webhook_id})

    async def _queue_location_setup(self, location_id: str, webhook_id: str) -> None:
        """Queue the follow-up full sync. A failure flags the location for manual setup."""
        try:
            await self.ctx.repos.archive.append("install_retry_queue", {
                "type": "SETUP_LOCATION",
                "payload": {
                    "type": "SETUP_LOCATION",
                    "locationId": location_id,
                    "fullSync": True,
                    "originalWebhookId": webhook_id,
                },
                "status": "pending",
                "attempts": 0,
                "maxAttempts": 3,
                "nextRetryAt": utcnow(),
            })
            await self.ctx.repos.locations.update_location(location_id, {
                "setupQueued": True,
                "setupQueuedAt": utcnow(),
                "lastSetupWebhook": webhook_id,
            })
        except Exception as e:
            logger.error(f"Could not queue setup for location {location_id}: {e}")
            await self.ctx.repos.locations.update_location(location_id, {
                "setupError": str(e),
                "needsManualSetup": True,
                "setupFailedAt": utcnow(),
            })

    async def _install_company(self, event: InstallEvent, item: WorkItem) -> None:
        archive = self.ctx.repos.archive
        await archive.append("app_events", {
            "type": "install",
            "entityType": "company",
            "entityId": event.company_id,
            "companyId": event.company_id,
            "planId": event.plan_id,
            "webhookId": item.webhook_id,
            "timestamp": event.timestamp or utcnow(),
            "metadata": {"companyName": event.company_name, "installType": "company"},
        })
        await archive.append("sync_queue", {
            "type": "SYNC_AGENCY",
            "companyId": event.company_id,
            "status": "pending",
            "priority": 3,
            "metadata": {"installWebhookId": item.webhook_id, "planId": event.plan_id, "source": "company_install"},
        })
        logger.info(f"Company {event.company_id} installed", extra={"webhook_id": item.webhook_id})

    # ============================================
    # UNINSTALL
    # ============================================

    async def uninstall(self, item: WorkItem) -> None:
        """
        Flag the location uninstalled, remove install-time derivative records and
        log every user of the location out. Contacts, invoices, messages and
        completed projects are kept.
        """
        event = UninstallEvent.from_payload(item.payload, item.location_id)
        location_id = event.location_id

        if location_id:
            await self.ctx.repos.locations.update_location(
                location_id,
                {
                    "appInstalled": False,
                    "uninstalledAt": event.timestamp or utcnow(),
                    "uninstalledBy": event.user_id,
                    "uninstallReason": event.reason or "User uninstalled",
                    "uninstallWebhookId": item.webhook_id,
                },
                unset=UNINSTALL_UNSET_FIELDS,
            )

            users = await self.ctx.repos.users.list_for_location(location_id)
            results = await self._cleanup_location(location_id, item)
            logger.info(f"Uninstall cleanup for {location_id}: {results}", extra={"webhook_id": item.webhook_id})

            for user in users:
                await self.ctx.notifier.publish(
                    user_channel(user.id),
                    "force-logout",
                    {"reason": "location_uninstalled", "locationId": location_id, "timestamp": utcnow()},
                )

        await self.ctx.repos.archive.append("app_events", {
            "type": "uninstall",
            "entityType": "location" if location_id else "company",
            "entityId": location_id or event.company_id,
            "companyId": event.company_id,
            "userId": event.user_id,
            "reason": event.reason,
            "webhookId": item.webhook_id,
            "timestamp": event.timestamp or utcnow(),
        })

    async def _cleanup_location(self, location_id: str, item: WorkItem) -> Dict[str, int]:
        database = self.ctx.database
        repos = self.ctx.repos
        now = utcnow()
        results: Dict[str, int] = {}

        for name in DERIVATIVE_COLLECTIONS:
            deleted = await database[name].delete_many({"locationId": location_id})
            results[name] = deleted.deleted_count

        queued = await database["automation_queue"].delete_many({"trigger.locationId": location_id})
        results["automation_queue"] = queued.deleted_count

        synced = await database["sync_queue"].delete_many({"locationId": location_id, "status": "pending"})
        results["sync_queue"] = synced.deleted_count

        templates = await database["templates"].delete_many({"locationId": location_id, "source": "auto_install"})
        results["templates"] = templates.deleted_count

        work_items = await database["work_items"].delete_many({
            "locationId": location_id,
            "webhookId": {"$ne": item.webhook_id},
            "status": {"$in": [WorkItemStatus.PENDING.value, WorkItemStatus.PROCESSING.value]},
        })
        results["work_items"] = work_items.deleted_count

        results["users"] = await repos.users.delete_many({"locationId": location_id})
        results["appointments"] = await repos.appointments.delete_many({
            "locationId": location_id,
            "startTime": {"$gte": now},
            "appointmentStatus": {"$nin": FINISHED_APPOINTMENT_STATUSES},
        })

        window = dt.timedelta(days=self.ctx.settings.uninstall_project_window_days)
        projects = await repos.projects.collection.update_many(
            {
                "locationId": location_id,
                "createdAt": {"$gte": now - window},
                "status": {"$in": UNINSTALL_PROJECT_STATUSES},
                "deleted": {"$ne": True},
            },
            {"$set": {"deleted": True, "deletedAt": now, "deletedReason": "app_uninstall", "updatedAt": now}},
        )
        results["projects"] = projects.modified_count
        return results

    # ============================================
    # PLAN CHANGE / EXTERNAL AUTH
    # ============================================

    async def plan_change(self, item: WorkItem) -> None:
        event = PlanChangeEvent.from_payload(item.payload, item.location_id)

        await self.ctx.repos.archive.append("app_events", {
            "type": "plan_change",
            "entityType": "location" if event.location_id else "company",
            "entityId": event.location_id or event.company_id,
            "companyId": event.company_id,
            "userId": event.user_id,
            "oldPlanId": event.old_plan_id,
            "newPlanId": event.new_plan_id,
            "webhookId": item.webhook_id,
            "timestamp": event.timestamp or utcnow(),
        })

        if event.location_id:
            await self.ctx.repos.locations.update_location(event.location_id, {
                "planId": event.new_plan_id,
                "planChangedAt": utcnow(),
            })

    async def external_auth_connected(self, item: WorkItem) -> None:
        event = ExternalAuthEvent.from_payload(item.payload, item.location_id)
        await self.ctx.repos.locations.upsert_location(
            event.location_id,
            {
                "hasLocationOAuth": True,
                "externalAuthConnectedAt": event.timestamp or utcnow(),
                "externalAuthWebhookId": item.webhook_id,
                "companyId": event.company_id,
            },
        )

    # ============================================
    # USERS
    # ============================================

    async def user_create(self, item: WorkItem) -> None:
        """
        Upsert the user. A newly created user gets a setup token and a
        scheduled welcome email.
        """
        event = UserEvent.from_payload(item.payload, item.location_id)
        users = self.ctx.repos.users

        matchers: List[Dict[str, Any]] = [{"ghlUserId": event.id}]
        if event.email:
            matchers.append({"email": event.email, "locationId": event.location_id})
        existing = await users.find_one({"$or": matchers})

        profile = {
            key: value
            for key, value in {
                "email": event.email,
                "firstName": event.first_name,
                "lastName": event.last_name,
                "name": event.display_name or None,
                "phone": event.phone,
                "role": event.role,
                "permissions": event.permissions,
            }.items()
            if value is not None
        }

        if existing is not None:
            await users.update_fields(
                {"_id": as_object_id(existing.id)},
                {**profile, "ghlUserId": event.id, "lastWebhookUpdate": utcnow()}
            )
            return

        settings = self.ctx.settings
        setup_token = secrets.token_urlsafe(32)
        result = await users.upsert(
            filters.user(event.id, event.location_id),
            {**profile, "lastWebhookUpdate": utcnow()},
            {
                "role": "user",
                "isActive": True,
                "needsSetup": True,
                "onboardingStatus": "pending",
                "setupToken": setup_token,
                "setupTokenExpiry": utcnow() + dt.timedelta(days=settings.setup_token_ttl_days),
                "createdByWebhook": item.webhook_id,
            },
        )
        if not result.created:
            return

        first_name = event.first_name or (event.email.split("@")[0] if event.email else "User")
        await self.ctx.repos.archive.append("email_queue", {
            "type": "welcome_email",
            "userId": result.document_id,
            "email": event.email,
            "firstName": first_name,
            "locationId": event.location_id,
            "setupToken": setup_token,
            "scheduledFor": utcnow() + dt.timedelta(seconds=settings.welcome_email_delay_seconds),
            "status": "pending",
            "webhookId": item.webhook_id,
        })
        logger.info(f"Created user {event.id}, welcome email scheduled", extra={"location_id": event.location_id})
