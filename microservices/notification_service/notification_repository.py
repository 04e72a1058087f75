"""
Notification Service Data Repository

Data access layer - PostgreSQL (Async)
"""

import json
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Tuple

from core.postgres_client import PostgresClient, PostgresExecutor

from .audience import AudienceQuery
from .models import (
    AudienceFilter,
    Campaign,
    CampaignCategory,
    CampaignStatus,
    Channel,
    Customer,
    EmailLog,
    EmailLogStatus,
    Notification,
    NotificationPreference,
    NotificationStatus,
    SpecialDayType,
    Template,
    Trigger,
    TriggerType,
)

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"

# Campaign states that still hold a template reference
LIVE_CAMPAIGN_STATUSES = [
    CampaignStatus.DRAFT.value,
    CampaignStatus.SCHEDULED.value,
    CampaignStatus.SENDING.value,
]

TEMPLATE_COLUMNS = {"name", "channel", "subject", "body", "variables", "is_active"}
CAMPAIGN_COLUMNS = {
    "total_recipients", "sent_count", "failure_reason", "sending_started_at", "sent_at",
}
NOTIFICATION_COLUMNS = {
    "status", "error_message", "provider_message_id",
    "sent_at", "delivered_at", "opened_at", "clicked_at",
}
PREFERENCE_FLAGS = [
    "sms_enabled", "email_enabled", "push_enabled",
    "marketing_sms", "marketing_email", "marketing_push",
    "loyalty_notifications", "payment_reminders", "order_updates",
]


class ExtendedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and datetime types"""
    def default(self, obj):
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


def json_dumps(obj):
    """JSON dumps with Decimal and datetime support"""
    return json.dumps(obj, cls=ExtendedJSONEncoder)


def _json_field(value: Any, default: Any) -> Any:
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _set_clause(
    updates: Dict[str, Any], allowed: set, start_param: int
) -> Tuple[List[str], List[Any]]:
    """SET fragments for whitelisted columns, numbered from start_param"""
    set_clauses: List[str] = []
    params: List[Any] = []
    for key, value in updates.items():
        if key not in allowed:
            raise ValueError(f"Column {key} cannot be updated")
        params.append(value.value if hasattr(value, "value") else value)
        if isinstance(params[-1], (dict, list)):
            params[-1] = json_dumps(params[-1])
        set_clauses.append(f"{key} = ${start_param + len(params) - 1}")
    return set_clauses, params


class NotificationRepository:
    """Notification service data repository - PostgreSQL (Async)"""

    def __init__(self, db: PostgresClient, customer_table: str = "public.customers"):
        self.db = db
        self.schema = "notification"

        # Table names
        self.templates_table = "templates"
        self.campaigns_table = "campaigns"
        self.notifications_table = "notifications"
        self.triggers_table = "triggers"
        self.preferences_table = "preferences"
        self.email_logs_table = "email_logs"
        self.customer_table = customer_table

    def _table(self, name: str) -> str:
        return f"{self.schema}.{name}"

    async def initialize(self):
        """Initialize database connection"""
        await self.db.connect()
        logger.info("Notification repository initialized with PostgreSQL")

    async def apply_schema(self):
        """Apply SQL migrations in file-name order (statements are idempotent)"""
        for path in sorted(MIGRATIONS_DIR.glob("*.sql")):
            logger.info(f"Applying migration {path.name}")
            await self.db.execute_script(path.read_text(encoding="utf-8"))

    async def close(self):
        """Close database connection"""
        await self.db.close()
        logger.info("Notification repository database connection closed")

    async def health_check(self) -> bool:
        """Check repository health"""
        try:
            return await self.db.health_check()
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return False

    # ====================
    # Templates
    # ====================

    async def create_template(self, template: Template) -> Template:
        """Insert a template"""
        try:
            query = f'''
                INSERT INTO {self._table(self.templates_table)} (
                    id, name, channel, subject, body, variables,
                    is_active, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                RETURNING *
            '''
            params = [
                template.id, template.name, template.channel.value, template.subject,
                template.body, json_dumps(template.variables), template.is_active,
                template.created_at, template.updated_at,
            ]
            row = await self.db.query_row(query, params)
            return self._row_to_template(row)

        except Exception as e:
            logger.error(f"Error creating template {template.id}: {e}")
            raise

    async def get_template(self, template_id: str) -> Optional[Template]:
        """Get template by ID"""
        try:
            row = await self.db.query_row(
                f"SELECT * FROM {self._table(self.templates_table)} WHERE id = $1",
                [template_id],
            )
            return self._row_to_template(row) if row else None

        except Exception as e:
            logger.error(f"Error getting template {template_id}: {e}")
            raise

    async def list_templates(self, channel: Optional[Channel] = None) -> List[Template]:
        """Active templates, newest first"""
        try:
            conditions = ["is_active = TRUE"]
            params: List[Any] = []
            if channel:
                params.append(channel.value)
                conditions.append(f"channel = ${len(params)}")

            query = f'''
                SELECT * FROM {self._table(self.templates_table)}
                WHERE {" AND ".join(conditions)}
                ORDER BY created_at DESC
            '''
            rows = await self.db.query(query, params)
            return [self._row_to_template(row) for row in rows]

        except Exception as e:
            logger.error(f"Error listing templates: {e}")
            raise

    async def update_template(self, template_id: str, updates: Dict[str, Any]) -> Optional[Template]:
        """Update template fields"""
        try:
            if not updates:
                return await self.get_template(template_id)

            set_clauses, params = _set_clause(updates, TEMPLATE_COLUMNS, 1)
            params.append(datetime.now(timezone.utc))
            set_clauses.append(f"updated_at = ${len(params)}")
            params.append(template_id)

            query = f'''
                UPDATE {self._table(self.templates_table)}
                SET {", ".join(set_clauses)}
                WHERE id = ${len(params)}
                RETURNING *
            '''
            row = await self.db.query_row(query, params)
            return self._row_to_template(row) if row else None

        except Exception as e:
            logger.error(f"Error updating template {template_id}: {e}")
            raise

    async def count_template_references(self, template_id: str) -> Tuple[int, int]:
        """(live campaign count, active trigger count)"""
        try:
            campaigns = await self.db.query_row(
                f'''
                SELECT COUNT(*) AS total FROM {self._table(self.campaigns_table)}
                WHERE template_id = $1 AND status = ANY($2)
                ''',
                [template_id, LIVE_CAMPAIGN_STATUSES],
            )
            triggers = await self.db.query_row(
                f'''
                SELECT COUNT(*) AS total FROM {self._table(self.triggers_table)}
                WHERE template_id = $1 AND is_active = TRUE
                ''',
                [template_id],
            )
            return int(campaigns["total"]), int(triggers["total"])

        except Exception as e:
            logger.error(f"Error counting references for template {template_id}: {e}")
            raise

    async def delete_template(self, template_id: str) -> bool:
        """Hard delete"""
        try:
            row = await self.db.query_row(
                f"DELETE FROM {self._table(self.templates_table)} WHERE id = $1 RETURNING id",
                [template_id],
            )
            return row is not None

        except Exception as e:
            logger.error(f"Error deleting template {template_id}: {e}")
            raise

    # ====================
    # Campaigns
    # ====================

    def _campaign_select(self) -> str:
        return f'''
            SELECT c.*, t.name AS template_name
            FROM {self._table(self.campaigns_table)} c
            LEFT JOIN {self._table(self.templates_table)} t ON t.id = c.template_id
        '''

    async def create_campaign(self, campaign: Campaign) -> Campaign:
        """Insert a campaign"""
        try:
            query = f'''
                INSERT INTO {self._table(self.campaigns_table)} (
                    id, name, description, template_id, category, audience,
                    scheduled_at, status, created_by, created_at, updated_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
            '''
            params = [
                campaign.id, campaign.name, campaign.description, campaign.template_id,
                campaign.category.value, json_dumps(campaign.audience.model_dump(mode="json")),
                campaign.scheduled_at, campaign.status.value, campaign.created_by,
                campaign.created_at, campaign.updated_at,
            ]
            await self.db.execute(query, params)
            return await self.get_campaign(campaign.id)

        except Exception as e:
            logger.error(f"Error creating campaign {campaign.id}: {e}")
            raise

    async def get_campaign(self, campaign_id: str) -> Optional[Campaign]:
        """Get campaign by ID"""
        try:
            row = await self.db.query_row(f"{self._campaign_select()} WHERE c.id = $1", [campaign_id])
            return self._row_to_campaign(row) if row else None

        except Exception as e:
            logger.error(f"Error getting campaign {campaign_id}: {e}")
            raise

    async def list_campaigns(
        self,
        status: Optional[CampaignStatus] = None,
        category: Optional[CampaignCategory] = None,
        target_audience: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Campaign], int]:
        """List campaigns with filters, newest first"""
        try:
            conditions = ["TRUE"]
            params: List[Any] = []

            if status:
                params.append(status.value)
                conditions.append(f"c.status = ${len(params)}")

            if category:
                params.append(category.value)
                conditions.append(f"c.category = ${len(params)}")

            if target_audience:
                params.append(target_audience)
                conditions.append(f"c.audience->>'target_audience' = ${len(params)}")

            where_clause = " AND ".join(conditions)

            count_row = await self.db.query_row(
                f"SELECT COUNT(*) AS total FROM {self._table(self.campaigns_table)} c WHERE {where_clause}",
                params,
            )
            total = int(count_row["total"]) if count_row else 0

            list_query = f'''
                {self._campaign_select()}
                WHERE {where_clause}
                ORDER BY c.created_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
            '''
            rows = await self.db.query(list_query, params + [limit, offset])
            return [self._row_to_campaign(row) for row in rows], total

        except Exception as e:
            logger.error(f"Error listing campaigns: {e}")
            raise

    async def list_campaigns_by_status(self, status: CampaignStatus) -> List[Campaign]:
        """All campaigns in a status, earliest scheduled first"""
        try:
            rows = await self.db.query(
                f'''
                {self._campaign_select()}
                WHERE c.status = $1
                ORDER BY c.scheduled_at ASC NULLS LAST, c.created_at ASC
                ''',
                [status.value],
            )
            return [self._row_to_campaign(row) for row in rows]

        except Exception as e:
            logger.error(f"Error listing {status.value} campaigns: {e}")
            raise

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator["PostgresCampaignSendUnitOfWork"]:
        """Transaction for the send guard and the transition to sending"""
        async with self.db.transaction() as tx:
            yield PostgresCampaignSendUnitOfWork(self, tx)

    async def transition_campaign(
        self,
        campaign_id: str,
        from_statuses: Sequence[CampaignStatus],
        to_status: CampaignStatus,
        updates: Optional[Dict[str, Any]] = None,
    ) -> Optional[Campaign]:
        """Compare-and-set status change"""
        try:
            now = datetime.now(timezone.utc)
            params: List[Any] = [to_status.value, now]
            set_clauses = ["status = $1", "updated_at = $2"]

            extra_clauses, extra_params = _set_clause(updates or {}, CAMPAIGN_COLUMNS, len(params) + 1)
            set_clauses.extend(extra_clauses)
            params.extend(extra_params)

            params.append(campaign_id)
            params.append([s.value for s in from_statuses])
            query = f'''
                UPDATE {self._table(self.campaigns_table)}
                SET {", ".join(set_clauses)}
                WHERE id = ${len(params) - 1} AND status = ANY(${len(params)})
                RETURNING id
            '''
            row = await self.db.query_row(query, params)
            if not row:
                return None
            return await self.get_campaign(campaign_id)

        except Exception as e:
            logger.error(f"Error transitioning campaign {campaign_id} to {to_status.value}: {e}")
            raise

    async def increment_campaign_engagement(
        self, campaign_id: str, opened: int = 0, clicked: int = 0
    ) -> None:
        """Add to opened/clicked counters"""
        try:
            await self.db.execute(
                f'''
                UPDATE {self._table(self.campaigns_table)}
                SET opened_count = opened_count + $1,
                    clicked_count = clicked_count + $2,
                    updated_at = $3
                WHERE id = $4
                ''',
                [opened, clicked, datetime.now(timezone.utc), campaign_id],
            )

        except Exception as e:
            logger.error(f"Error updating engagement for campaign {campaign_id}: {e}")
            raise

    async def list_campaigns_sent_since(self, since: datetime, limit: int = 10) -> List[Campaign]:
        """Campaigns sent within the window, most recent first"""
        try:
            rows = await self.db.query(
                f'''
                {self._campaign_select()}
                WHERE c.sent_at IS NOT NULL AND c.sent_at >= $1
                ORDER BY c.sent_at DESC
                LIMIT $2
                ''',
                [since, limit],
            )
            return [self._row_to_campaign(row) for row in rows]

        except Exception as e:
            logger.error(f"Error listing campaigns sent since {since}: {e}")
            raise

    # ====================
    # Notifications
    # ====================

    async def create_notification(self, notification: Notification) -> Notification:
        """Insert a notification"""
        try:
            query = f'''
                INSERT INTO {self._table(self.notifications_table)} (
                    id, campaign_id, customer_id, channel, subject, content,
                    recipient, status, error_message, provider_message_id,
                    created_at, sent_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                RETURNING *
            '''
            params = [
                notification.id, notification.campaign_id, notification.customer_id,
                notification.channel.value, notification.subject, notification.content,
                notification.recipient, notification.status.value, notification.error_message,
                notification.provider_message_id, notification.created_at, notification.sent_at,
            ]
            row = await self.db.query_row(query, params)
            return self._row_to_notification(row)

        except Exception as e:
            logger.error(f"Error creating notification {notification.id}: {e}")
            raise

    async def get_notification(self, notification_id: str) -> Optional[Notification]:
        """Get notification by ID"""
        try:
            row = await self.db.query_row(
                f"SELECT * FROM {self._table(self.notifications_table)} WHERE id = $1",
                [notification_id],
            )
            return self._row_to_notification(row) if row else None

        except Exception as e:
            logger.error(f"Error getting notification {notification_id}: {e}")
            raise

    async def update_notification(
        self, notification_id: str, updates: Dict[str, Any]
    ) -> Optional[Notification]:
        """Update notification fields"""
        try:
            if not updates:
                return await self.get_notification(notification_id)

            set_clauses, params = _set_clause(updates, NOTIFICATION_COLUMNS, 1)
            params.append(notification_id)
            query = f'''
                UPDATE {self._table(self.notifications_table)}
                SET {", ".join(set_clauses)}
                WHERE id = ${len(params)}
                RETURNING *
            '''
            row = await self.db.query_row(query, params)
            return self._row_to_notification(row) if row else None

        except Exception as e:
            logger.error(f"Error updating notification {notification_id}: {e}")
            raise

    async def transition_notification(
        self,
        notification_id: str,
        from_status: NotificationStatus,
        updates: Dict[str, Any],
    ) -> Optional[Notification]:
        """Compare-and-set update guarded on the status the caller read"""
        try:
            set_clauses, params = _set_clause(updates, NOTIFICATION_COLUMNS, 1)
            params.append(notification_id)
            params.append(from_status.value)
            query = f'''
                UPDATE {self._table(self.notifications_table)}
                SET {", ".join(set_clauses)}
                WHERE id = ${len(params) - 1} AND status = ${len(params)}
                RETURNING *
            '''
            row = await self.db.query_row(query, params)
            return self._row_to_notification(row) if row else None

        except Exception as e:
            logger.error(f"Error transitioning notification {notification_id}: {e}")
            raise

    async def count_campaign_notifications(
        self, campaign_id: str, statuses: Sequence[NotificationStatus]
    ) -> int:
        """Count a campaign's notifications in the given statuses"""
        try:
            row = await self.db.query_row(
                f'''
                SELECT COUNT(*) AS total FROM {self._table(self.notifications_table)}
                WHERE campaign_id = $1 AND status = ANY($2)
                ''',
                [campaign_id, [s.value for s in statuses]],
            )
            return int(row["total"]) if row else 0

        except Exception as e:
            logger.error(f"Error counting notifications for campaign {campaign_id}: {e}")
            raise

    async def count_notifications_by_channel_status(
        self, since: datetime
    ) -> List[Tuple[Channel, NotificationStatus, int]]:
        """Grouped counts of notifications created within the window"""
        try:
            rows = await self.db.query(
                f'''
                SELECT channel, status, COUNT(*) AS total
                FROM {self._table(self.notifications_table)}
                WHERE created_at >= $1
                GROUP BY channel, status
                ''',
                [since],
            )
            return [
                (Channel(row["channel"]), NotificationStatus(row["status"]), int(row["total"]))
                for row in rows
            ]

        except Exception as e:
            logger.error(f"Error aggregating notifications since {since}: {e}")
            raise

    # ====================
    # Customer directory (read-only)
    # ====================

    def _audience_sql(self, query: AudienceQuery) -> Tuple[str, List[Any]]:
        return query.to_sql(self.customer_table, self._table(self.preferences_table))

    async def get_customer(self, customer_id: str) -> Optional[Customer]:
        """Get customer by ID"""
        try:
            row = await self.db.query_row(
                f"SELECT * FROM {self.customer_table} WHERE id = $1", [customer_id]
            )
            return self._row_to_customer(row) if row else None

        except Exception as e:
            logger.error(f"Error getting customer {customer_id}: {e}")
            raise

    async def resolve_audience(self, query: AudienceQuery) -> List[Customer]:
        """Customers matching the audience query"""
        try:
            sql, params = self._audience_sql(query)
            rows = await self.db.query(sql, params)
            return [self._row_to_customer(row) for row in rows]

        except Exception as e:
            logger.error(f"Error resolving audience: {e}")
            raise

    async def list_customers_with_special_dates(self) -> List[Customer]:
        """Active customers with an email and a birthday or anniversary"""
        try:
            rows = await self.db.query(
                f'''
                SELECT * FROM {self.customer_table}
                WHERE is_active = TRUE
                  AND email IS NOT NULL AND TRIM(email) <> ''
                  AND (birthday IS NOT NULL OR anniversary_date IS NOT NULL)
                ORDER BY id
                '''
            )
            return [self._row_to_customer(row) for row in rows]

        except Exception as e:
            logger.error(f"Error listing customers with special dates: {e}")
            raise

    # ====================
    # Preferences
    # ====================

    async def get_preference(self, customer_id: str) -> Optional[NotificationPreference]:
        """Stored preference row, if any"""
        try:
            row = await self.db.query_row(
                f"SELECT * FROM {self._table(self.preferences_table)} WHERE customer_id = $1",
                [customer_id],
            )
            return self._row_to_preference(row) if row else None

        except Exception as e:
            logger.error(f"Error getting preferences for {customer_id}: {e}")
            raise

    async def upsert_preference(self, preference: NotificationPreference) -> NotificationPreference:
        """Insert or replace a preference row"""
        try:
            columns = ["customer_id"] + PREFERENCE_FLAGS + ["updated_at"]
            placeholders = ", ".join(f"${i}" for i in range(1, len(columns) + 1))
            updates = ", ".join(f"{col} = EXCLUDED.{col}" for col in PREFERENCE_FLAGS + ["updated_at"])
            query = f'''
                INSERT INTO {self._table(self.preferences_table)} ({", ".join(columns)})
                VALUES ({placeholders})
                ON CONFLICT (customer_id) DO UPDATE SET {updates}
                RETURNING *
            '''
            params = [preference.customer_id]
            params += [getattr(preference, flag) for flag in PREFERENCE_FLAGS]
            params.append(preference.updated_at or datetime.now(timezone.utc))
            row = await self.db.query_row(query, params)
            return self._row_to_preference(row)

        except Exception as e:
            logger.error(f"Error saving preferences for {preference.customer_id}: {e}")
            raise

    # ====================
    # Triggers
    # ====================

    async def create_trigger(self, trigger: Trigger) -> Trigger:
        """Insert a trigger"""
        try:
            query = f'''
                INSERT INTO {self._table(self.triggers_table)} (
                    id, name, trigger_type, conditions, template_id, is_active, created_at
                ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                RETURNING *
            '''
            params = [
                trigger.id, trigger.name, trigger.trigger_type.value,
                json_dumps(trigger.conditions.model_dump(mode="json")),
                trigger.template_id, trigger.is_active, trigger.created_at,
            ]
            row = await self.db.query_row(query, params)
            return self._row_to_trigger(row)

        except Exception as e:
            logger.error(f"Error creating trigger {trigger.id}: {e}")
            raise

    async def list_triggers(self, trigger_type: Optional[TriggerType] = None) -> List[Trigger]:
        """Active triggers, newest first"""
        try:
            conditions = ["is_active = TRUE"]
            params: List[Any] = []
            if trigger_type:
                params.append(trigger_type.value)
                conditions.append(f"trigger_type = ${len(params)}")

            rows = await self.db.query(
                f'''
                SELECT * FROM {self._table(self.triggers_table)}
                WHERE {" AND ".join(conditions)}
                ORDER BY created_at DESC
                ''',
                params,
            )
            return [self._row_to_trigger(row) for row in rows]

        except Exception as e:
            logger.error(f"Error listing triggers: {e}")
            raise

    # ====================
    # Email log
    # ====================

    async def append_email_log(self, log: EmailLog) -> EmailLog:
        """Append one special-day attempt"""
        try:
            await self.db.execute(
                f'''
                INSERT INTO {self._table(self.email_logs_table)} (
                    id, customer_id, email_type, status, error, sent_at
                ) VALUES ($1, $2, $3, $4, $5, $6)
                ''',
                [log.id, log.customer_id, log.email_type.value, log.status.value, log.error, log.sent_at],
            )
            return log

        except Exception as e:
            logger.error(f"Error appending email log for customer {log.customer_id}: {e}")
            raise

    async def list_email_logs(
        self,
        limit: int,
        offset: int,
        email_type: Optional[SpecialDayType] = None,
        status: Optional[EmailLogStatus] = None,
    ) -> Tuple[List[EmailLog], int]:
        """Page of email logs, newest first, with customer name/email"""
        try:
            conditions = ["TRUE"]
            params: List[Any] = []
            if email_type:
                params.append(email_type.value)
                conditions.append(f"l.email_type = ${len(params)}")
            if status:
                params.append(status.value)
                conditions.append(f"l.status = ${len(params)}")
            where_clause = " AND ".join(conditions)

            count_row = await self.db.query_row(
                f"SELECT COUNT(*) AS total FROM {self._table(self.email_logs_table)} l WHERE {where_clause}",
                params,
            )
            total = int(count_row["total"]) if count_row else 0

            rows = await self.db.query(
                f'''
                SELECT l.*, c.first_name, c.last_name, c.email AS customer_email
                FROM {self._table(self.email_logs_table)} l
                LEFT JOIN {self.customer_table} c ON c.id = l.customer_id
                WHERE {where_clause}
                ORDER BY l.sent_at DESC
                LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
                ''',
                params + [limit, offset],
            )
            return [self._row_to_email_log(row) for row in rows], total

        except Exception as e:
            logger.error(f"Error listing email logs: {e}")
            raise

    # ====================
    # Row mappers
    # ====================

    def _row_to_template(self, row: Dict[str, Any]) -> Template:
        """Convert database row to Template model"""
        return Template(
            id=row["id"],
            name=row["name"],
            channel=Channel(row["channel"]),
            subject=row.get("subject"),
            body=row["body"],
            variables=_json_field(row.get("variables"), {}),
            is_active=row.get("is_active", True),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def _row_to_campaign(self, row: Dict[str, Any]) -> Campaign:
        """Convert database row to Campaign model"""
        return Campaign(
            id=row["id"],
            name=row["name"],
            description=row.get("description"),
            template_id=row["template_id"],
            template_name=row.get("template_name"),
            category=CampaignCategory(row.get("category") or "custom"),
            audience=AudienceFilter.model_validate(_json_field(row.get("audience"), {})),
            scheduled_at=row.get("scheduled_at"),
            status=CampaignStatus(row["status"]),
            total_recipients=row.get("total_recipients") or 0,
            sent_count=row.get("sent_count") or 0,
            opened_count=row.get("opened_count") or 0,
            clicked_count=row.get("clicked_count") or 0,
            failure_reason=row.get("failure_reason"),
            created_by=row.get("created_by"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            sending_started_at=row.get("sending_started_at"),
            sent_at=row.get("sent_at"),
        )

    def _row_to_notification(self, row: Dict[str, Any]) -> Notification:
        """Convert database row to Notification model"""
        return Notification(
            id=row["id"],
            campaign_id=row.get("campaign_id"),
            customer_id=row["customer_id"],
            channel=Channel(row["channel"]),
            subject=row.get("subject"),
            content=row["content"],
            recipient=row["recipient"],
            status=NotificationStatus(row["status"]),
            error_message=row.get("error_message"),
            provider_message_id=row.get("provider_message_id"),
            created_at=row.get("created_at"),
            sent_at=row.get("sent_at"),
            delivered_at=row.get("delivered_at"),
            opened_at=row.get("opened_at"),
            clicked_at=row.get("clicked_at"),
        )

    def _row_to_customer(self, row: Dict[str, Any]) -> Customer:
        """Convert directory row to Customer model"""
        return Customer(
            id=str(row["id"]),
            first_name=row.get("first_name") or "",
            last_name=row.get("last_name") or "",
            email=row.get("email"),
            phone=row.get("phone"),
            is_active=bool(row.get("is_active", True)),
            customer_group=row.get("customer_group"),
            loyalty_points=row.get("loyalty_points") or 0,
            loyalty_tier=row.get("loyalty_tier"),
            total_spent=row.get("total_spent") or Decimal("0"),
            last_purchase_date=row.get("last_purchase_date"),
            birthday=row.get("birthday"),
            anniversary_date=row.get("anniversary_date"),
            created_at=row.get("created_at"),
        )

    def _row_to_preference(self, row: Dict[str, Any]) -> NotificationPreference:
        """Convert database row to NotificationPreference model"""
        return NotificationPreference(
            customer_id=row["customer_id"],
            updated_at=row.get("updated_at"),
            **{flag: bool(row[flag]) for flag in PREFERENCE_FLAGS},
        )

    def _row_to_trigger(self, row: Dict[str, Any]) -> Trigger:
        """Convert database row to Trigger model"""
        return Trigger(
            id=row["id"],
            name=row["name"],
            trigger_type=TriggerType(row["trigger_type"]),
            conditions=_json_field(row.get("conditions"), {"kind": "generic"}),
            template_id=row["template_id"],
            is_active=row.get("is_active", True),
            created_at=row.get("created_at"),
        )

    def _row_to_email_log(self, row: Dict[str, Any]) -> EmailLog:
        """Convert database row to EmailLog model"""
        name = f"{row.get('first_name') or ''} {row.get('last_name') or ''}".strip()
        return EmailLog(
            id=row["id"],
            customer_id=row["customer_id"],
            email_type=SpecialDayType(row["email_type"]),
            status=EmailLogStatus(row["status"]),
            error=row.get("error"),
            sent_at=row["sent_at"],
            customer_name=name or None,
            customer_email=row.get("customer_email"),
        )


class PostgresCampaignSendUnitOfWork:
    """Send unit of work bound to one transaction"""

    def __init__(self, repository: NotificationRepository, tx: PostgresExecutor):
        self.repository = repository
        self.tx = tx

    async def get_campaign_for_update(self, campaign_id: str) -> Optional[Campaign]:
        row = await self.tx.query_row(
            f'''
            SELECT * FROM {self.repository._table(self.repository.campaigns_table)}
            WHERE id = $1
            FOR UPDATE
            ''',
            [campaign_id],
        )
        return self.repository._row_to_campaign(row) if row else None

    async def get_template(self, template_id: str) -> Optional[Template]:
        row = await self.tx.query_row(
            f"SELECT * FROM {self.repository._table(self.repository.templates_table)} WHERE id = $1",
            [template_id],
        )
        return self.repository._row_to_template(row) if row else None

    async def resolve_audience(self, query: AudienceQuery) -> List[Customer]:
        sql, params = self.repository._audience_sql(query)
        rows = await self.tx.query(sql, params)
        return [self.repository._row_to_customer(row) for row in rows]

    async def mark_sending(
        self, campaign_id: str, total_recipients: int, started_at: datetime
    ) -> Campaign:
        row = await self.tx.query_row(
            f'''
            UPDATE {self.repository._table(self.repository.campaigns_table)}
            SET status = $1, total_recipients = $2, sending_started_at = $3, updated_at = $3
            WHERE id = $4
            RETURNING *
            ''',
            [CampaignStatus.SENDING.value, total_recipients, started_at, campaign_id],
        )
        return self.repository._row_to_campaign(row)
