"""
Audience predicate builder

An audience filter compiles into an ordered list of typed clauses. Each
clause renders a parameterised SQL fragment for the repository and can
evaluate itself against an in-memory customer/preference pair, so the
selection rules are testable without a database.

Preference clauses are fail-open: a customer without a stored preference
row passes every opt-in clause.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .models import (
    AudienceFilter,
    CampaignCategory,
    Channel,
    Customer,
    NotificationPreference,
    TargetAudience,
)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class AudienceClause:
    """One predicate over the customer (alias `c`) left-joined to preferences (alias `p`)"""

    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        raise NotImplementedError

    def matches(self, customer: Customer, preference: Optional[NotificationPreference]) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class ActiveCustomer(AudienceClause):
    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        return "c.is_active = TRUE", []

    def matches(self, customer, preference) -> bool:
        return customer.is_active


@dataclass(frozen=True)
class HasAddress(AudienceClause):
    channel: Channel

    @property
    def column(self) -> str:
        return "c.phone" if self.channel == Channel.SMS else "c.email"

    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        return f"({self.column} IS NOT NULL AND TRIM({self.column}) <> '')", []

    def matches(self, customer, preference) -> bool:
        return customer.address_for(self.channel) is not None


@dataclass(frozen=True)
class CreatedSince(AudienceClause):
    since: datetime

    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        return f"c.created_at >= ${next_param}", [self.since]

    def matches(self, customer, preference) -> bool:
        created_at = _aware(customer.created_at)
        return created_at is not None and created_at >= self.since


@dataclass(frozen=True)
class HasSpend(AudienceClause):
    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        return "c.total_spent > 0", []

    def matches(self, customer, preference) -> bool:
        return customer.total_spent > 0


@dataclass(frozen=True)
class HasLoyaltyPoints(AudienceClause):
    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        return "c.loyalty_points > 0", []

    def matches(self, customer, preference) -> bool:
        return customer.loyalty_points > 0


@dataclass(frozen=True)
class InCustomerGroup(AudienceClause):
    group: str

    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        return f"c.customer_group = ${next_param}", [self.group]

    def matches(self, customer, preference) -> bool:
        return customer.customer_group == self.group


@dataclass(frozen=True)
class MinimumSpend(AudienceClause):
    amount: Decimal

    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        return f"c.total_spent >= ${next_param}", [self.amount]

    def matches(self, customer, preference) -> bool:
        return customer.total_spent >= self.amount


@dataclass(frozen=True)
class PurchasedSince(AudienceClause):
    since: datetime

    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        return f"c.last_purchase_date >= ${next_param}", [self.since]

    def matches(self, customer, preference) -> bool:
        last_purchase = _aware(customer.last_purchase_date)
        return last_purchase is not None and last_purchase >= self.since


@dataclass(frozen=True)
class ChannelOptIn(AudienceClause):
    channel: Channel

    @property
    def column(self) -> str:
        return f"{self.channel.value}_enabled"

    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        return f"(p.customer_id IS NULL OR p.{self.column} = TRUE)", []

    def matches(self, customer, preference) -> bool:
        return preference is None or preference.allows_channel(self.channel)


@dataclass(frozen=True)
class CategoryOptIn(AudienceClause):
    category: CampaignCategory
    channel: Channel

    @property
    def column(self) -> Optional[str]:
        if self.category == CampaignCategory.PROMOTION:
            return f"marketing_{self.channel.value}"
        if self.category == CampaignCategory.LOYALTY:
            return "loyalty_notifications"
        if self.category == CampaignCategory.PAYMENT_REMINDER:
            return "payment_reminders"
        return None

    def to_sql(self, next_param: int) -> Tuple[str, List[Any]]:
        if self.column is None:
            return "TRUE", []
        return f"(p.customer_id IS NULL OR p.{self.column} = TRUE)", []

    def matches(self, customer, preference) -> bool:
        return preference is None or preference.allows_category(self.category, self.channel)


@dataclass
class AudienceQuery:
    """Ordered clause list; all clauses must hold"""

    clauses: List[AudienceClause] = field(default_factory=list)
    channel: Optional[Channel] = None

    def where(self, start_param: int = 1) -> Tuple[str, List[Any]]:
        """Render the WHERE body and its parameters, numbering from start_param"""
        fragments: List[str] = []
        params: List[Any] = []
        for clause in self.clauses:
            fragment, clause_params = clause.to_sql(start_param + len(params))
            fragments.append(fragment)
            params.extend(clause_params)
        return " AND ".join(fragments) or "TRUE", params

    def to_sql(self, customers_table: str, preferences_table: str) -> Tuple[str, List[Any]]:
        where_clause, params = self.where()
        sql = f'''
            SELECT c.* FROM {customers_table} c
            LEFT JOIN {preferences_table} p ON p.customer_id = c.id
            WHERE {where_clause}
            ORDER BY c.id
        '''
        return sql, params

    def matches(self, customer: Customer, preference: Optional[NotificationPreference]) -> bool:
        return all(clause.matches(customer, preference) for clause in self.clauses)

    def apply(
        self,
        customers: Iterable[Customer],
        preferences: Dict[str, NotificationPreference],
    ) -> List[Customer]:
        """Evaluate in memory; result is deduplicated and ordered by id"""
        selected: Dict[str, Customer] = {}
        for customer in customers:
            if customer.id in selected:
                continue
            if self.matches(customer, preferences.get(customer.id)):
                selected[customer.id] = customer
        return [selected[key] for key in sorted(selected)]


def build_audience_query(
    audience: AudienceFilter,
    now: datetime,
    channel: Optional[Channel] = None,
    category: Optional[CampaignCategory] = None,
    new_customer_window_days: int = 30,
) -> AudienceQuery:
    """
    Compile an audience filter into a query.

    Args:
        audience: Validated filter
        now: Reference time for the trailing windows
        channel: Delivery channel when the filter does not name one
        category: Campaign category whose opt-in flag must not be disabled
        new_customer_window_days: Trailing window that defines a "new" customer
    """
    channel = audience.notification_type or channel
    clauses: List[AudienceClause] = [ActiveCustomer()]

    if audience.target_audience == TargetAudience.NEW:
        clauses.append(CreatedSince(now - timedelta(days=new_customer_window_days)))
    elif audience.target_audience == TargetAudience.RETURNING:
        clauses.append(HasSpend())
    elif audience.target_audience == TargetAudience.LOYALTY:
        clauses.append(HasLoyaltyPoints())

    if audience.customer_group:
        clauses.append(InCustomerGroup(audience.customer_group))

    if audience.min_purchase_amount is not None:
        clauses.append(MinimumSpend(audience.min_purchase_amount))

    if audience.last_purchase_days:
        clauses.append(PurchasedSince(now - timedelta(days=audience.last_purchase_days)))

    if channel is not None:
        clauses.append(HasAddress(channel))
        clauses.append(ChannelOptIn(channel))
        if category is not None and category != CampaignCategory.CUSTOM:
            clauses.append(CategoryOptIn(category, channel))

    return AudienceQuery(clauses=clauses, channel=channel)
