"""
Special Day Service

Birthday and anniversary emails. Matches customers whose stored date falls
on today's month/day (any year), renders the built-in email, sends it
through the channel dispatcher and appends one email log per attempt.
"""

import calendar
import logging
import math
import uuid
from datetime import date, timedelta
from typing import List, Optional

from core.config import MailConfig

from .channels import ChannelDispatcher
from .email_templates import SPECIAL_DAY_EMAILS
from .events.publishers import NotificationEventPublishers
from .models import (
    Channel,
    Customer,
    EmailLog,
    EmailLogListResponse,
    EmailLogStatus,
    Pagination,
    SpecialDayDispatchResult,
    SpecialDayServiceStatus,
    SpecialDaySummary,
    SpecialDayType,
    UpcomingSpecialDay,
)
from .protocols import (
    Clock,
    NotificationRepositoryProtocol,
    NotificationValidationError,
    utc_now,
)
from .renderer import MessageRenderer

logger = logging.getLogger(__name__)

DATE_FIELDS = {
    SpecialDayType.BIRTHDAY: "birthday",
    SpecialDayType.ANNIVERSARY: "anniversary_date",
}

MAX_UPCOMING_DAYS = 365
MAX_LOG_PAGE_SIZE = 200


def falls_on(stored: Optional[date], day: date) -> bool:
    """Month/day equality, ignoring the year. Feb 29 falls on Feb 28 in non-leap years."""
    if stored is None:
        return False
    if (stored.month, stored.day) == (2, 29) and not calendar.isleap(day.year):
        return (day.month, day.day) == (2, 28)
    return (stored.month, stored.day) == (day.month, day.day)


class SpecialDayService:
    """Date-predicate dispatch for birthdays and anniversaries"""

    def __init__(
        self,
        repository: NotificationRepositoryProtocol,
        dispatcher: ChannelDispatcher,
        mail_config: Optional[MailConfig] = None,
        renderer: Optional[MessageRenderer] = None,
        event_publishers: Optional[NotificationEventPublishers] = None,
        clock: Clock = utc_now,
    ):
        self.repository = repository
        self.dispatcher = dispatcher
        self.mail_config = mail_config or MailConfig()
        self.renderer = renderer or MessageRenderer()
        self.event_publishers = event_publishers or NotificationEventPublishers()
        self.clock = clock

    def _today(self) -> date:
        return self.clock().date()

    # ====================
    # Matching
    # ====================

    async def _customers_on(self, email_type: SpecialDayType, day: date) -> List[Customer]:
        field = DATE_FIELDS[email_type]
        customers = await self.repository.list_customers_with_special_dates()
        return [
            customer for customer in customers
            if customer.is_active
            and customer.address_for(Channel.EMAIL)
            and falls_on(getattr(customer, field), day)
        ]

    async def customers_with_birthday_today(self) -> List[Customer]:
        return await self._customers_on(SpecialDayType.BIRTHDAY, self._today())

    async def customers_with_anniversary_today(self) -> List[Customer]:
        return await self._customers_on(SpecialDayType.ANNIVERSARY, self._today())

    async def upcoming_special_days(self, days: int = 7) -> List[UpcomingSpecialDay]:
        """Birthdays and anniversaries from today through `days` days ahead"""
        if days < 1 or days > MAX_UPCOMING_DAYS:
            raise NotificationValidationError(
                f"days must be between 1 and {MAX_UPCOMING_DAYS}", fields=["days"]
            )

        today = self._today()
        customers = await self.repository.list_customers_with_special_dates()
        upcoming: List[UpcomingSpecialDay] = []
        for offset in range(days + 1):
            day = today + timedelta(days=offset)
            for customer in customers:
                if not customer.address_for(Channel.EMAIL):
                    continue
                for email_type, field in DATE_FIELDS.items():
                    if falls_on(getattr(customer, field), day):
                        upcoming.append(
                            UpcomingSpecialDay(
                                customer_id=customer.id,
                                first_name=customer.first_name,
                                last_name=customer.last_name,
                                email=customer.email,
                                email_type=email_type,
                                date=day,
                                days_until=offset,
                            )
                        )
        return upcoming

    # ====================
    # Dispatch
    # ====================

    def _render(self, email_type: SpecialDayType, customer: Customer):
        email = SPECIAL_DAY_EMAILS[email_type]
        variables = self.renderer.build_variables(
            customer,
            extra={
                "store_name": self.mail_config.store_name,
                "store_url": self.mail_config.store_url,
                "offer_code": email.offer_code(self._today().year),
                "discount_percent": email.discount_percent,
            },
        )
        return self.renderer.render(email.subject, variables), self.renderer.render(email.html, variables)

    async def _log(
        self, customer: Customer, email_type: SpecialDayType, status: EmailLogStatus, error: Optional[str] = None
    ) -> None:
        await self.repository.append_email_log(
            EmailLog(
                id=f"elog_{uuid.uuid4().hex}",
                customer_id=customer.id,
                email_type=email_type,
                status=status,
                error=error,
                sent_at=self.clock(),
            )
        )

    async def _dispatch(self, email_type: SpecialDayType) -> SpecialDayDispatchResult:
        label = email_type.value.capitalize()
        customers = await self._customers_on(email_type, self._today())
        if not customers:
            logger.info(f"No {email_type.value}s today")
            return SpecialDayDispatchResult(
                email_type=email_type, success=True, message=f"No {email_type.value}s today"
            )

        logger.info(f"Found {len(customers)} customer(s) with {email_type.value}s today")
        sent = failed = 0
        for customer in customers:
            recipient = customer.address_for(Channel.EMAIL)
            try:
                subject, html = self._render(email_type, customer)
                result = await self.dispatcher.send(Channel.EMAIL, recipient, subject, html)
            except Exception as e:
                logger.error(f"Error sending {email_type.value} email to {recipient}: {e}", exc_info=True)
                failed += 1
                await self._log(customer, email_type, EmailLogStatus.FAILED, str(e))
                continue

            if result.success:
                sent += 1
                logger.info(f"{label} email sent to {customer.full_name} ({recipient})")
                await self._log(customer, email_type, EmailLogStatus.SUCCESS)
            else:
                failed += 1
                logger.error(f"Failed to send {email_type.value} email to {recipient}: {result.error}")
                await self._log(customer, email_type, EmailLogStatus.FAILED, result.error)

        message = f"{label} emails processed: {sent} sent, {failed} failed"
        logger.info(message)
        return SpecialDayDispatchResult(
            email_type=email_type,
            success=True,
            emails_sent=sent,
            emails_failed=failed,
            total_customers=len(customers),
            message=message,
        )

    async def _dispatch_isolated(self, email_type: SpecialDayType) -> SpecialDayDispatchResult:
        try:
            return await self._dispatch(email_type)
        except Exception as e:
            logger.error(f"{email_type.value} dispatch failed: {e}", exc_info=True)
            return SpecialDayDispatchResult(
                email_type=email_type,
                success=False,
                message=f"{email_type.value.capitalize()} dispatch failed",
                error=str(e),
            )

    async def send_birthday_emails(self) -> SpecialDayDispatchResult:
        return await self._dispatch_isolated(SpecialDayType.BIRTHDAY)

    async def send_anniversary_emails(self) -> SpecialDayDispatchResult:
        return await self._dispatch_isolated(SpecialDayType.ANNIVERSARY)

    async def send_all_special_day_emails(self) -> SpecialDaySummary:
        """Both paths, each isolated from failures in the other"""
        logger.info("Starting daily birthday and anniversary email run")
        birthday = await self.send_birthday_emails()
        anniversary = await self.send_anniversary_emails()

        summary = SpecialDaySummary(
            success=birthday.success and anniversary.success,
            birthday=birthday,
            anniversary=anniversary,
            total_emails_sent=birthday.emails_sent + anniversary.emails_sent,
            total_emails_failed=birthday.emails_failed + anniversary.emails_failed,
        )
        logger.info(
            f"Daily special-day run completed: {summary.total_emails_sent} sent, "
            f"{summary.total_emails_failed} failed"
        )
        await self.event_publishers.publish_special_day_completed(
            birthday_sent=birthday.emails_sent,
            anniversary_sent=anniversary.emails_sent,
            total_failed=summary.total_emails_failed,
        )
        return summary

    # ====================
    # Diagnostics
    # ====================

    async def test_service(self) -> SpecialDayServiceStatus:
        """Email transport check plus today's match counts"""
        transport_ok = await self.dispatcher.verify_email()
        birthdays = await self.customers_with_birthday_today()
        anniversaries = await self.customers_with_anniversary_today()
        return SpecialDayServiceStatus(
            email_transport_ok=transport_ok,
            email_transport=self.dispatcher.email_sender.name,
            birthdays_today=len(birthdays),
            anniversaries_today=len(anniversaries),
        )

    async def list_email_logs(
        self,
        page: int = 1,
        limit: int = 50,
        email_type: Optional[SpecialDayType] = None,
        status: Optional[EmailLogStatus] = None,
    ) -> EmailLogListResponse:
        invalid = []
        if page < 1:
            invalid.append("page")
        if limit < 1 or limit > MAX_LOG_PAGE_SIZE:
            invalid.append("limit")
        if invalid:
            raise NotificationValidationError(
                f"Invalid pagination: {', '.join(invalid)}", fields=invalid
            )

        logs, total = await self.repository.list_email_logs(
            limit=limit, offset=(page - 1) * limit, email_type=email_type, status=status
        )
        return EmailLogListResponse(
            logs=logs,
            pagination=Pagination(
                page=page, limit=limit, total=total, total_pages=math.ceil(total / limit)
            ),
        )
