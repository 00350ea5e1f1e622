"""
Deadline Calculator
Statutory due dates for UK VAT returns, company accounts and Corporation Tax
"""

import calendar
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from dateutil.relativedelta import relativedelta

from filing_tracker.core.config import settings
from filing_tracker.schemas.workflow import VatQuarter

REFERENCE_TZ = ZoneInfo(settings.REFERENCE_TIMEZONE)

VAT_QUARTER_GROUPS = {
    "1_4_7_10": (1, 4, 7, 10),
    "2_5_8_11": (2, 5, 8, 11),
    "3_6_9_12": (3, 6, 9, 12),
}

# UK tax year runs 6 April to 5 April
TAX_YEAR_START = (4, 6)
TAX_YEAR_END = (4, 5)


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _clamped(year: int, month: int, day: int) -> date:
    """Build a date, pulling the day back to the month end when it overflows"""
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def london_today(now: Optional[datetime] = None) -> date:
    """Calendar date in the reference timezone; naive datetimes are taken as UTC"""
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(REFERENCE_TZ).date()


def accounts_filing_deadline(period_end: date) -> date:
    """Companies House accounts due 9 months after the period end"""
    return period_end + relativedelta(months=9)


def corporation_tax_filing_deadline(period_end: date) -> date:
    """CT600 due 12 months after the period end"""
    return period_end + relativedelta(months=12)


def corporation_tax_payment_deadline(period_end: date) -> date:
    """Corporation Tax payable 9 months and 1 day after the period end"""
    return period_end + relativedelta(months=9, days=1)


def vat_filing_deadline(quarter_end: date) -> date:
    """Last day of the month after the quarter end"""
    following = quarter_end.replace(day=1) + relativedelta(months=1)
    return _month_end(following.year, following.month)


def non_ltd_year_end(tax_year: int) -> date:
    """5 April closing the tax year that starts on 6 April ``tax_year``"""
    return date(tax_year + 1, *TAX_YEAR_END)


def non_ltd_period_start(tax_year: int) -> date:
    return date(tax_year, *TAX_YEAR_START)


def non_ltd_filing_deadline(year_end: date) -> date:
    """Accounts due 9 months after the 5 April year end"""
    return year_end + relativedelta(months=9)


def current_non_ltd_tax_year(today: date) -> int:
    """Tax year containing ``today``"""
    if (today.month, today.day) < TAX_YEAR_START:
        return today.year - 1
    return today.year


def ltd_period_start(period_end: date) -> date:
    return period_end - relativedelta(years=1) + relativedelta(days=1)


def resolve_reference_date(
    day: int,
    month: int,
    last_accounts_made_up_to: Optional[date] = None,
    today: Optional[date] = None,
    incorporation_date: Optional[date] = None,
) -> date:
    """
    Resolve a Companies House accounting reference date (day/month, no year).

    Companies that have filed before use their last accounts date + 1 year.
    First-time filers take the first reference date at least 6 months after
    incorporation. Otherwise the next occurrence on or after ``today``.
    """
    if last_accounts_made_up_to is not None:
        return last_accounts_made_up_to + relativedelta(years=1)

    if incorporation_date is not None:
        earliest = incorporation_date + relativedelta(months=6)
        year = incorporation_date.year
        while _clamped(year, month, day) < earliest:
            year += 1
        return _clamped(year, month, day)

    if today is None:
        today = london_today()
    candidate = _clamped(today.year, month, day)
    if candidate < today:
        candidate = _clamped(today.year + 1, month, day)
    return candidate


def calculate_vat_quarter(quarter_group: str, reference_date: date) -> VatQuarter:
    """The quarter of ``quarter_group`` that contains ``reference_date``"""
    months = VAT_QUARTER_GROUPS.get(quarter_group)
    if months is None:
        raise ValueError(
            f"Invalid quarter group: {quarter_group}. "
            f"Expected one of {', '.join(VAT_QUARTER_GROUPS)}"
        )

    end_year = reference_date.year
    end_month = next((m for m in months if reference_date.month <= m), None)
    if end_month is None:
        end_month = months[0]
        end_year += 1

    end = _month_end(end_year, end_month)
    start = end.replace(day=1) - relativedelta(months=2)
    return VatQuarter(
        quarter_group=quarter_group,
        start=start,
        end=end,
        filing_due=vat_filing_deadline(end),
        period_label=f"{start.isoformat()}_to_{end.isoformat()}",
    )


def quarter_group_for(quarter_end: date) -> str:
    """Quarter group whose quarters end in the month of ``quarter_end``"""
    return next(g for g, months in VAT_QUARTER_GROUPS.items() if quarter_end.month in months)


def next_vat_quarter(quarter_group: str, current_quarter_end: date) -> VatQuarter:
    return calculate_vat_quarter(
        quarter_group, current_quarter_end + relativedelta(months=3)
    )


def days_until_due(due_date: date, now: Optional[datetime] = None) -> int:
    """Whole days from the London start of today to the due date; 0 means due today"""
    return (due_date - london_today(now)).days


def is_overdue(due_date: date, now: Optional[datetime] = None) -> bool:
    return london_today(now) > due_date


def statutory_dates(kind, period_end: date) -> dict:
    """Due dates stored on a workflow of ``kind`` ending ``period_end``"""
    kind = getattr(kind, "value", kind)
    if kind == "VAT":
        return {"filing_due_date": vat_filing_deadline(period_end)}
    if kind == "NON_LTD":
        return {"filing_due_date": non_ltd_filing_deadline(period_end)}
    accounts_due = accounts_filing_deadline(period_end)
    return {
        "filing_due_date": accounts_due,
        "accounts_due_date": accounts_due,
        "ct_filing_due_date": corporation_tax_filing_deadline(period_end),
        "ct_payment_due_date": corporation_tax_payment_deadline(period_end),
    }
