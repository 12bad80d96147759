"""
Reconciliation Module

Combines projected accrued interest with recorded payments to give one
pending-interest figure per loan, per borrower and per tenant.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Any, Iterable

from .currency import Money, Currency
from .loans import Loan, Payment, RateType, PRINCIPAL_PAYMENT_TYPES
from .projection import InterestProjector


@dataclass
class LoanPendingInterest:
    """Pending interest breakdown for one loan"""
    loan_id: str
    borrower_id: str
    principal: Money
    interest_rate: Decimal
    rate_type: RateType
    start_date: date
    total_interest: Money
    interest_paid: Money
    pending_interest: Money
    interest_cleared_till: Optional[date] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'loan_id': self.loan_id,
            'borrower_id': self.borrower_id,
            'principal': str(self.principal.amount),
            'interest_rate': str(self.interest_rate),
            'rate_type': self.rate_type.value,
            'start_date': self.start_date.isoformat(),
            'total_interest_till_date': str(self.total_interest.amount),
            'interest_paid_till_date': str(self.interest_paid.amount),
            'pending_interest': str(self.pending_interest.amount),
            'interest_cleared_till': (
                self.interest_cleared_till.isoformat() if self.interest_cleared_till else None
            )
        }


@dataclass
class PendingInterestResult:
    """Pending interest as of a date, for a loan or a borrower"""
    till_date: date
    currency: Currency
    total_interest: Money
    total_paid: Money
    total_pending: Money
    loans: List[LoanPendingInterest] = field(default_factory=list)
    borrower_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'till_date': self.till_date.isoformat(),
            'borrower_id': self.borrower_id,
            'currency': self.currency.code,
            'total_interest_till_date': str(self.total_interest.amount),
            'total_interest_paid': str(self.total_paid.amount),
            'total_pending_interest': str(self.total_pending.amount),
            'loans': [loan.to_dict() for loan in self.loans]
        }


@dataclass
class DashboardSummary:
    """Tenant-wide lending figures"""
    tenant_id: Optional[str]
    as_of: date
    total_lent: Money
    outstanding_principal: Money
    total_accrued: Money
    total_interest_paid: Money
    total_pending: Money
    active_loans: int
    active_borrowers: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tenant_id': self.tenant_id,
            'as_of': self.as_of.isoformat(),
            'total_lent': str(self.total_lent.amount),
            'outstanding_principal': str(self.outstanding_principal.amount),
            'total_accrued': str(self.total_accrued.amount),
            'total_interest_paid': str(self.total_interest_paid.amount),
            'total_pending': str(self.total_pending.amount),
            'active_loans': self.active_loans,
            'active_borrowers': self.active_borrowers
        }


def _payments_for(loan: Loan, payments: Iterable[Payment], as_of_date: date) -> List[Payment]:
    return [p for p in payments if p.loan_id == loan.id and p.payment_date <= as_of_date]


class Reconciler:
    """Pending interest = max(0, accrued - interest paid), per loan"""

    def __init__(self, projector: InterestProjector, default_currency: Currency = Currency.INR):
        self.projector = projector
        self.default_currency = default_currency

    def loan_breakdown(self, loan: Loan, payments: Iterable[Payment],
                       as_of_date: date) -> LoanPendingInterest:
        """
        Reconcile one loan.

        Raises:
            InvalidRange: If as_of_date precedes the loan's start date
        """
        accrued = self.projector.accrued_interest(loan, as_of_date)

        paid = Money.zero(loan.currency)
        cleared_till = None
        for payment in _payments_for(loan, payments, as_of_date):
            if not payment.is_interest:
                continue
            paid = paid + payment.amount
            if payment.interest_cleared_till and (
                cleared_till is None or payment.interest_cleared_till > cleared_till
            ):
                cleared_till = payment.interest_cleared_till

        pending = accrued - paid
        if pending.is_negative():
            pending = Money.zero(loan.currency)

        return LoanPendingInterest(
            loan_id=loan.id,
            borrower_id=loan.borrower_id,
            principal=loan.principal,
            interest_rate=loan.interest_rate,
            rate_type=loan.rate_type,
            start_date=loan.start_date,
            total_interest=accrued,
            interest_paid=paid,
            pending_interest=pending,
            interest_cleared_till=cleared_till
        )

    def pending_interest(self, loan: Loan, payments: Iterable[Payment],
                         as_of_date: date) -> PendingInterestResult:
        breakdown = self.loan_breakdown(loan, payments, as_of_date)
        return PendingInterestResult(
            till_date=as_of_date,
            currency=loan.currency,
            total_interest=breakdown.total_interest,
            total_paid=breakdown.interest_paid,
            total_pending=breakdown.pending_interest,
            loans=[breakdown],
            borrower_id=loan.borrower_id
        )

    def pending_interest_for_borrower(self, loans: Iterable[Loan], payments: Iterable[Payment],
                                      as_of_date: date,
                                      borrower_id: Optional[str] = None) -> PendingInterestResult:
        """
        Aggregate pending interest across a borrower's loans.

        Each loan is clamped at zero on its own before summing, so an
        overpaid loan never offsets another. Loans starting after
        ``as_of_date`` have accrued nothing and are left out.
        """
        payments = list(payments)
        eligible = [loan for loan in loans if loan.start_date <= as_of_date]
        currency = eligible[0].currency if eligible else self.default_currency

        result = PendingInterestResult(
            till_date=as_of_date,
            currency=currency,
            total_interest=Money.zero(currency),
            total_paid=Money.zero(currency),
            total_pending=Money.zero(currency),
            borrower_id=borrower_id
        )
        for loan in eligible:
            breakdown = self.loan_breakdown(loan, payments, as_of_date)
            result.loans.append(breakdown)
            result.total_interest = result.total_interest + breakdown.total_interest
            result.total_paid = result.total_paid + breakdown.interest_paid
            result.total_pending = result.total_pending + breakdown.pending_interest
        return result

    def dashboard(self, tenant_id: Optional[str], loans: Iterable[Loan],
                  payments: Iterable[Payment], as_of_date: date) -> DashboardSummary:
        """
        Tenant totals.

        ``total_lent`` covers every loan; the remaining figures cover active
        loans that started on or before ``as_of_date``. Principal and mixed
        payments reduce outstanding principal, never below zero per loan.
        """
        loans = list(loans)
        payments = list(payments)
        currency = loans[0].currency if loans else self.default_currency

        total_lent = Money.zero(currency)
        for loan in loans:
            total_lent = total_lent + loan.principal

        active = [loan for loan in loans if loan.is_active and loan.start_date <= as_of_date]
        outstanding = Money.zero(currency)
        accrued = Money.zero(currency)
        paid = Money.zero(currency)
        pending = Money.zero(currency)
        for loan in active:
            repaid = Money.zero(currency)
            for payment in _payments_for(loan, payments, as_of_date):
                if payment.payment_type in PRINCIPAL_PAYMENT_TYPES:
                    repaid = repaid + payment.amount
            remaining = loan.principal - repaid
            if not remaining.is_negative():
                outstanding = outstanding + remaining

            breakdown = self.loan_breakdown(loan, payments, as_of_date)
            accrued = accrued + breakdown.total_interest
            paid = paid + breakdown.interest_paid
            pending = pending + breakdown.pending_interest

        return DashboardSummary(
            tenant_id=tenant_id,
            as_of=as_of_date,
            total_lent=total_lent,
            outstanding_principal=outstanding,
            total_accrued=accrued,
            total_interest_paid=paid,
            total_pending=pending,
            active_loans=len(active),
            active_borrowers=len({loan.borrower_id for loan in active})
        )
