"""
Component Tests for the Template Store and Triggers

Create/read/update, soft delete guarded by live references, admin hard
delete, and trigger registration against existing templates.
"""

import pytest

from microservices.notification_service.models import (
    CampaignStatus,
    Channel,
    TemplateUpdateRequest,
    TriggerType,
)
from microservices.notification_service.protocols import (
    NotificationValidationError,
    TemplateInUseError,
    TemplateNotFoundError,
)

pytestmark = pytest.mark.component


class TestTemplateCreate:
    @pytest.mark.asyncio
    async def test_create_template(self, notification_service, repository, factory, clock):
        """Given a valid request, When created, Then it is stored active"""
        request = factory.make_template_create_request(name="  Loyalty reminder  ")

        template = await notification_service.create_template(request)

        assert template.id.startswith("tpl_")
        assert template.name == "Loyalty reminder"
        assert template.is_active is True
        assert template.created_at == clock.now
        assert template.id in repository.templates

    @pytest.mark.asyncio
    async def test_blank_name_and_body_rejected(self, notification_service, repository, factory):
        request = factory.make_template_create_request(name=" ", body="")

        with pytest.raises(NotificationValidationError) as exc_info:
            await notification_service.create_template(request)

        assert exc_info.value.fields == ["name", "body"]
        assert repository.templates == {}


class TestTemplateRead:
    @pytest.mark.asyncio
    async def test_get_unknown_template(self, notification_service):
        with pytest.raises(TemplateNotFoundError):
            await notification_service.get_template("tpl_missing")

    @pytest.mark.asyncio
    async def test_list_filters_by_channel_and_hides_inactive(self, notification_service, repository, factory):
        email = factory.make_template(channel=Channel.EMAIL)
        sms = factory.make_template(channel=Channel.SMS, subject=None)
        retired = factory.make_template(is_active=False)
        for template in (email, sms, retired):
            repository.templates[template.id] = template

        everything = await notification_service.list_templates()
        only_sms = await notification_service.list_templates(Channel.SMS)

        assert {t.id for t in everything} == {email.id, sms.id}
        assert [t.id for t in only_sms] == [sms.id]


class TestTemplateUpdate:
    @pytest.mark.asyncio
    async def test_partial_update(self, notification_service, email_template):
        updated = await notification_service.update_template(
            email_template.id, TemplateUpdateRequest(subject="New subject")
        )

        assert updated.subject == "New subject"
        assert updated.body == email_template.body
        assert updated.name == email_template.name

    @pytest.mark.asyncio
    async def test_subject_can_be_cleared(self, notification_service, email_template):
        updated = await notification_service.update_template(
            email_template.id, TemplateUpdateRequest(subject=None)
        )
        assert updated.subject is None

    @pytest.mark.asyncio
    async def test_explicit_blank_required_field_rejected(self, notification_service, email_template):
        with pytest.raises(NotificationValidationError) as exc_info:
            await notification_service.update_template(
                email_template.id, TemplateUpdateRequest(name="", body=None)
            )
        assert exc_info.value.fields == ["name", "body"]

    @pytest.mark.asyncio
    async def test_update_unknown_template(self, notification_service):
        with pytest.raises(TemplateNotFoundError):
            await notification_service.update_template("tpl_missing", TemplateUpdateRequest(subject="x"))

    @pytest.mark.asyncio
    async def test_deactivation_refused_while_referenced(
        self, notification_service, repository, factory, email_template
    ):
        """Given a scheduled campaign on the template, When deactivated via update, Then 409 and still active"""
        scheduled = factory.make_campaign(email_template.id, status=CampaignStatus.SCHEDULED)
        repository.campaigns[scheduled.id] = scheduled

        with pytest.raises(TemplateInUseError) as exc_info:
            await notification_service.update_template(
                email_template.id, TemplateUpdateRequest(is_active=False, name="Retired")
            )

        assert exc_info.value.campaign_count == 1
        stored = repository.templates[email_template.id]
        assert stored.is_active is True
        assert stored.name == email_template.name

    @pytest.mark.asyncio
    async def test_deactivate_and_reactivate_unreferenced(self, notification_service, email_template):
        retired = await notification_service.update_template(
            email_template.id, TemplateUpdateRequest(is_active=False)
        )
        restored = await notification_service.update_template(
            email_template.id, TemplateUpdateRequest(is_active=True)
        )

        assert retired.is_active is False
        assert restored.is_active is True


class TestTemplateDelete:
    @pytest.mark.asyncio
    async def test_soft_delete_refused_while_referenced(
        self, notification_service, repository, factory, email_template
    ):
        """Given a draft campaign and an active trigger, When deleting, Then 409 with counts"""
        draft = factory.make_campaign(email_template.id, status=CampaignStatus.DRAFT)
        repository.campaigns[draft.id] = draft
        await notification_service.create_trigger(factory.make_birthday_trigger_request(email_template.id))

        with pytest.raises(TemplateInUseError) as exc_info:
            await notification_service.delete_template(email_template.id)

        assert exc_info.value.campaign_count == 1
        assert exc_info.value.trigger_count == 1
        assert repository.templates[email_template.id].is_active is True

    @pytest.mark.asyncio
    async def test_finished_campaigns_do_not_block_delete(
        self, notification_service, repository, factory, email_template
    ):
        for status in (CampaignStatus.SENT, CampaignStatus.FAILED):
            campaign = factory.make_campaign(email_template.id, status=status)
            repository.campaigns[campaign.id] = campaign

        deleted = await notification_service.delete_template(email_template.id)

        assert deleted.is_active is False
        assert await notification_service.list_templates() == []
        # soft-deleted templates stay readable by id
        assert (await notification_service.get_template(email_template.id)).is_active is False

    @pytest.mark.asyncio
    async def test_delete_unknown_template(self, notification_service):
        with pytest.raises(TemplateNotFoundError):
            await notification_service.delete_template("tpl_missing")

    @pytest.mark.asyncio
    async def test_hard_delete_ignores_references(
        self, notification_service, repository, factory, email_template
    ):
        draft = factory.make_campaign(email_template.id)
        repository.campaigns[draft.id] = draft

        await notification_service.hard_delete_template(email_template.id)

        assert email_template.id not in repository.templates
        with pytest.raises(TemplateNotFoundError):
            await notification_service.hard_delete_template(email_template.id)


class TestTriggers:
    @pytest.mark.asyncio
    async def test_create_and_list_triggers(self, notification_service, factory, email_template):
        birthday = await notification_service.create_trigger(
            factory.make_birthday_trigger_request(email_template.id)
        )
        await notification_service.create_trigger(
            factory.make_birthday_trigger_request(
                email_template.id, name="Promo rule", trigger_type=TriggerType.PROMOTION
            )
        )

        assert birthday.id.startswith("trg_")
        assert birthday.conditions.date_field == "birthday"
        assert len(await notification_service.list_triggers()) == 2
        assert [t.id for t in await notification_service.list_triggers(TriggerType.BIRTHDAY)] == [birthday.id]

    @pytest.mark.asyncio
    async def test_trigger_requires_existing_template(self, notification_service, factory):
        with pytest.raises(TemplateNotFoundError):
            await notification_service.create_trigger(factory.make_birthday_trigger_request("tpl_missing"))

    @pytest.mark.asyncio
    async def test_trigger_requires_name(self, notification_service, factory, email_template):
        with pytest.raises(NotificationValidationError):
            await notification_service.create_trigger(
                factory.make_birthday_trigger_request(email_template.id, name="  ")
            )
