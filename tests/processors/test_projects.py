"""
Tests for opportunity handlers and the project timeline.
"""
import pytest

from src.models.work_item import QueueType
from src.processors.projects import ProjectsProcessor
from tests.helpers import automation_triggers, make_item, published, pushed


@pytest.fixture
def processor(ctx):
    return ProjectsProcessor(ctx)


def opportunity_item(webhook_type: str, **fields):
    return make_item(
        webhook_type,
        {"id": "opp1", "locationId": "loc1", **fields},
        queue_type=QueueType.PROJECTS,
    )


async def timeline_events(ctx):
    project = await ctx.database.projects.find_one({"ghlOpportunityId": "opp1"})
    return [entry["event"] for entry in project["timeline"]]


class TestOpportunityCreate:

    async def test_create_project(self, ctx, processor, publisher, push):
        await ctx.database.contacts.insert_one({"ghlContactId": "ghl-c1", "locationId": "loc1"})

        await processor.process_item(opportunity_item(
            "OpportunityCreate",
            name="Roof replacement",
            contactId="ghl-c1",
            status="open",
            monetaryValue=12000,
            assignedTo="u1",
        ))

        project = await ctx.database.projects.find_one({"ghlOpportunityId": "opp1"})
        assert project["title"] == "Roof replacement"
        assert project["status"] == "open"
        assert project["monetaryValue"] == 12000
        assert project["contactId"] is not None
        assert await timeline_events(ctx) == ["project_created"]

        assert pushed(push) == [("u1", "New Project Assigned")]
        events = [(channel, event) for channel, event, _ in published(publisher)]
        assert ("user:u1", "project-created") in events
        assert ("location:loc1", "projects.changed") in events

    async def test_replay_keeps_single_timeline_entry(self, ctx, processor):
        item = opportunity_item("OpportunityCreate", name="Gutters")

        await processor.process_item(item)
        await processor.process_item(item)

        assert await ctx.database.projects.count_documents({"ghlOpportunityId": "opp1"}) == 1
        assert await timeline_events(ctx) == ["project_created"]

    async def test_unknown_status_reads_as_open(self, ctx, processor):
        await processor.process_item(opportunity_item("OpportunityCreate", status="mystery"))

        project = await ctx.database.projects.find_one({"ghlOpportunityId": "opp1"})
        assert project["status"] == "open"
        assert project["title"] == "Untitled Project"


class TestOpportunityChanges:

    @pytest.fixture(autouse=True)
    async def existing(self, processor, publisher, push):
        await processor.process_item(opportunity_item("OpportunityCreate", name="Siding", assignedTo="u1"))
        publisher.publish.reset_mock()
        push.send_to_user.reset_mock()

    async def test_status_update(self, ctx, processor):
        await processor.process_item(opportunity_item("OpportunityStatusUpdate", status="won", previousStatus="open"))

        project = await ctx.database.projects.find_one({"ghlOpportunityId": "opp1"})
        assert project["status"] == "won"
        assert project["timeline"][-1]["event"] == "status_changed"
        assert project["timeline"][-1]["metadata"]["previousStatus"] == "open"

    async def test_stage_update(self, ctx, processor):
        await processor.process_item(opportunity_item(
            "OpportunityStageUpdate", pipelineStageId="s2", pipelineStageName="Quoted",
        ))

        project = await ctx.database.projects.find_one({"ghlOpportunityId": "opp1"})
        assert project["pipelineStageId"] == "s2"
        assert project["pipelineStageName"] == "Quoted"
        assert project["timeline"][-1]["description"] == "Moved to stage: Quoted"

    async def test_value_update(self, ctx, processor):
        await processor.process_item(opportunity_item("OpportunityMonetaryValueUpdate", monetaryValue=4500.5))

        project = await ctx.database.projects.find_one({"ghlOpportunityId": "opp1"})
        assert project["monetaryValue"] == 4500.5
        assert project["timeline"][-1]["description"] == "Value updated to $4,500.50"

    async def test_reassignment_pushes_to_new_assignee(self, ctx, processor, push):
        await processor.process_item(opportunity_item(
            "OpportunityAssignedToUpdate", assignedTo="u2", previousAssignee="u1",
        ))

        project = await ctx.database.projects.find_one({"ghlOpportunityId": "opp1"})
        assert project["assignedTo"] == "u2"
        assert pushed(push) == [("u2", "Project Assigned")]

    async def test_generic_update_maps_fields(self, ctx, processor, publisher):
        await processor.process_item(opportunity_item("OpportunityUpdate", name="Siding and trim", status="LOST"))

        project = await ctx.database.projects.find_one({"ghlOpportunityId": "opp1"})
        assert project["title"] == "Siding and trim"
        assert project["status"] == "lost"
        assert project["timeline"][-1]["event"] == "project_updated"

        [(_, event, data)] = published(publisher)
        assert event == "projects.changed"
        assert data["changes"] == ["status", "title"]

    async def test_delete_is_soft_with_timeline(self, ctx, processor):
        await processor.process_item(opportunity_item("OpportunityDelete"))

        project = await ctx.database.projects.find_one({"ghlOpportunityId": "opp1"})
        assert project["deleted"] is True
        assert project["status"] == "deleted"
        assert project["timeline"][-1]["event"] == "project_deleted"

    async def test_timeline_only_grows(self, ctx, processor):
        await processor.process_item(opportunity_item("OpportunityStatusUpdate", status="won"))
        await processor.process_item(opportunity_item("OpportunityMonetaryValueUpdate", monetaryValue=1))

        assert await timeline_events(ctx) == ["project_created", "status_changed", "value_changed"]

    async def test_replayed_change_logs_once(self, ctx, processor):
        item = opportunity_item("OpportunityStatusUpdate", status="won", previousStatus="open")

        await processor.process_item(item)
        await processor.process_item(item)

        assert await timeline_events(ctx) == ["project_created", "status_changed"]

    async def test_replayed_delete_logs_once(self, ctx, processor):
        item = opportunity_item("OpportunityDelete")

        await processor.process_item(item)
        await processor.process_item(item)

        assert await timeline_events(ctx) == ["project_created", "project_deleted"]

    async def test_stage_update_queues_stage_entered(self, ctx, processor):
        await processor.process_item(opportunity_item(
            "OpportunityStageUpdate", pipelineStageId="s2", previousStageId="s1", pipelineId="p1",
        ))

        [(trigger, data)] = await automation_triggers(ctx.database)
        assert trigger == "stage-entered"
        assert data == {
            "ghlOpportunityId": "opp1",
            "newStage": "s2",
            "oldStage": "s1",
            "pipelineId": "p1",
            "locationId": "loc1",
        }

    async def test_status_update_queues_no_trigger(self, ctx, processor):
        await processor.process_item(opportunity_item("OpportunityStatusUpdate", status="won"))

        assert await automation_triggers(ctx.database) == []


class TestChangeForUnknownProject:

    async def test_status_update_creates_project(self, ctx, processor, publisher):
        await processor.process_item(opportunity_item("OpportunityStatusUpdate", status="won", name="Late"))

        project = await ctx.database.projects.find_one({"ghlOpportunityId": "opp1"})
        assert project["status"] == "won"
        assert await timeline_events(ctx) == ["project_created"]
        assert [event for _, event, _ in published(publisher)] == ["projects.changed"]

    async def test_delete_of_unknown_project_is_noop(self, ctx, processor):
        await processor.process_item(opportunity_item("OpportunityDelete"))

        assert await ctx.database.projects.count_documents({}) == 0
