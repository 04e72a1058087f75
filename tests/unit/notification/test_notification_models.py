"""
Unit Tests for Notification Models

Structured audience and trigger fields, timestamp normalization and the
preference/customer helpers.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError

from microservices.notification_service.models import (
    AudienceFilter,
    CampaignCategory,
    CampaignCreateRequest,
    Channel,
    DatePredicateCondition,
    DeliveryStatusUpdateRequest,
    EmailCheckRequest,
    GenericCondition,
    NotificationPreference,
    NotificationStatus,
    PreferenceUpdateRequest,
    TargetAudience,
    TriggerCreateRequest,
    TriggerType,
)
from tests.contracts.notification.data_contract import NotificationTestDataFactory

pytestmark = pytest.mark.unit

F = NotificationTestDataFactory


class TestAudienceFilter:
    def test_defaults_to_all(self):
        assert AudienceFilter().target_audience == TargetAudience.ALL

    def test_unknown_key_rejected(self):
        with pytest.raises(ValidationError):
            AudienceFilter(**F.make_invalid_audience_payload())

    def test_unknown_target_rejected(self):
        with pytest.raises(ValidationError):
            AudienceFilter(target_audience="vip")

    @pytest.mark.parametrize("days", [0, -1, 4000])
    def test_last_purchase_days_bounds(self, days):
        with pytest.raises(ValidationError):
            AudienceFilter(last_purchase_days=days)

    def test_negative_min_purchase_rejected(self):
        with pytest.raises(ValidationError):
            AudienceFilter(min_purchase_amount=-5)


class TestTriggerConditions:
    def test_date_predicate_parsed_by_kind(self):
        request = TriggerCreateRequest(
            name="Birthday",
            trigger_type=TriggerType.BIRTHDAY,
            template_id="tpl_1",
            conditions={"kind": "date_predicate", "date_field": "anniversary_date"},
        )
        assert isinstance(request.conditions, DatePredicateCondition)
        assert request.conditions.date_field == "anniversary_date"

    def test_generic_is_default(self):
        request = TriggerCreateRequest(name="Promo", trigger_type=TriggerType.PROMOTION, template_id="tpl_1")
        assert isinstance(request.conditions, GenericCondition)
        assert request.conditions.rules == {}

    def test_unknown_date_field_rejected(self):
        with pytest.raises(ValidationError):
            TriggerCreateRequest(
                name="Wedding",
                trigger_type=TriggerType.ANNIVERSARY,
                template_id="tpl_1",
                conditions={"kind": "date_predicate", "date_field": "wedding_day"},
            )

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            TriggerCreateRequest(
                name="x", trigger_type=TriggerType.CUSTOM, template_id="tpl_1", conditions={"kind": "cron"}
            )


class TestTimestampNormalization:
    def test_naive_scheduled_at_is_utc(self):
        request = CampaignCreateRequest(
            name="June", template_id="tpl_1", scheduled_at=datetime(2025, 6, 20, 9, 0)
        )
        assert request.scheduled_at == datetime(2025, 6, 20, 9, 0, tzinfo=timezone.utc)

    def test_naive_occurred_at_is_utc(self):
        update = DeliveryStatusUpdateRequest(status=NotificationStatus.OPENED, occurred_at=datetime(2025, 6, 1))
        assert update.occurred_at.tzinfo == timezone.utc


class TestPreferenceHelpers:
    def test_defaults_are_opted_in(self):
        preference = NotificationPreference(customer_id="cust_1")
        assert all(preference.allows_channel(channel) for channel in Channel)

    def test_promotion_uses_channel_marketing_flag(self):
        preference = F.make_preference("cust_1", marketing_sms=False)

        assert not preference.allows_category(CampaignCategory.PROMOTION, Channel.SMS)
        assert preference.allows_category(CampaignCategory.PROMOTION, Channel.EMAIL)

    def test_custom_category_always_allowed(self):
        preference = F.make_preference(
            "cust_1", loyalty_notifications=False, payment_reminders=False, marketing_email=False
        )
        assert preference.allows_category(CampaignCategory.CUSTOM, Channel.EMAIL)
        assert not preference.allows_category(CampaignCategory.LOYALTY, Channel.EMAIL)
        assert not preference.allows_category(CampaignCategory.PAYMENT_REMINDER, Channel.EMAIL)

    def test_update_request_rejects_unknown_flags(self):
        with pytest.raises(ValidationError):
            PreferenceUpdateRequest(whatsapp_enabled=True)


class TestCustomerHelpers:
    def test_address_for_channel(self):
        customer = F.make_customer(email=" aline@example.com ", phone="+250788000111")

        assert customer.address_for(Channel.EMAIL) == "aline@example.com"
        assert customer.address_for(Channel.PUSH) == "aline@example.com"
        assert customer.address_for(Channel.SMS) == "+250788000111"

    def test_blank_address_is_none(self):
        assert F.make_customer(phone="  ").address_for(Channel.SMS) is None

    def test_full_name(self):
        assert F.make_customer(first_name="Aline", last_name="").full_name == "Aline"


def test_email_check_request_validates_address():
    with pytest.raises(ValidationError):
        EmailCheckRequest(to="not-an-email")
