"""
Loan Book Module

The borrower, loan and payment records the interest ledger reads. Record
management belongs to the surrounding application; this module provides the
narrow store the ledger consumes plus the few writes needed to register and
edit loans.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass
from typing import Dict, List, Optional, Any, Iterable
from enum import Enum
import uuid

from .currency import Money, Currency, to_decimal
from .errors import InvalidArgument, NotFound
from .storage import StorageInterface, StorageRecord


class RateType(Enum):
    """Period a loan's interest rate applies to"""
    MONTHLY = "monthly"
    ANNUAL = "annual"


class LoanStatus(Enum):
    ACTIVE = "active"
    SETTLED = "settled"
    CLOSED = "closed"


class PaymentType(Enum):
    """How a payment is applied"""
    PRINCIPAL = "principal"
    INTEREST = "interest"
    PARTIAL_INTEREST = "partial_interest"
    MIXED = "mixed"


INTEREST_PAYMENT_TYPES = frozenset({PaymentType.INTEREST, PaymentType.PARTIAL_INTEREST})
PRINCIPAL_PAYMENT_TYPES = frozenset({PaymentType.PRINCIPAL, PaymentType.MIXED})


@dataclass
class Borrower(StorageRecord):
    name: str
    email: str = ""
    phone: str = ""
    status: str = "active"  # active, overdue, settled


@dataclass
class Loan(StorageRecord):
    """A loan as the ledger sees it: principal, rate, rate type and start date"""
    borrower_id: str
    principal: Money
    interest_rate: Decimal  # percentage per rate period, e.g. Decimal('2') for 2%
    rate_type: RateType
    start_date: date
    status: LoanStatus = LoanStatus.ACTIVE
    notes: str = ""

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE


@dataclass
class Payment(StorageRecord):
    loan_id: str
    amount: Money
    payment_date: date
    payment_type: PaymentType
    payment_method: str = "cash"  # cash, upi, bank_transfer, cheque
    interest_cleared_till: Optional[date] = None
    notes: str = ""

    @property
    def is_interest(self) -> bool:
        return self.payment_type in INTEREST_PAYMENT_TYPES


def parse_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)


class LoanBook:
    """Storage-backed borrower, loan and payment records"""

    def __init__(self, storage: StorageInterface, default_currency: Currency = Currency.INR):
        self.storage = storage
        self.default_currency = default_currency
        self.borrowers_table = "borrowers"
        self.loans_table = "loans"
        self.payments_table = "payments"

    # Borrowers

    def add_borrower(self, name: str, email: str = "", phone: str = "",
                     status: str = "active") -> Borrower:
        if not name:
            raise InvalidArgument("Borrower name is required")
        now = datetime.now(timezone.utc)
        borrower = Borrower(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            name=name,
            email=email,
            phone=phone,
            status=status
        )
        self.storage.save(self.borrowers_table, borrower.id, borrower.to_dict())
        return borrower

    def get_borrower(self, borrower_id: str) -> Optional[Borrower]:
        data = self.storage.load(self.borrowers_table, borrower_id)
        if data:
            return self._borrower_from_dict(data)
        return None

    def list_borrowers(self) -> List[Borrower]:
        return [self._borrower_from_dict(d) for d in self.storage.load_all(self.borrowers_table)]

    # Loans

    def create_loan(
        self,
        borrower_id: str,
        principal: Any,
        interest_rate: Any,
        rate_type: RateType,
        start_date: date,
        currency: Optional[Currency] = None,
        status: LoanStatus = LoanStatus.ACTIVE,
        notes: str = ""
    ) -> Loan:
        """
        Create a loan record

        Args:
            borrower_id: Existing borrower
            principal: Money, Decimal, int or numeric string
            interest_rate: Percentage per rate period
            rate_type: Monthly or annual rate
            start_date: First day interest accrues
            currency: Currency when principal is not already Money

        Raises:
            NotFound: If the borrower does not exist
            InvalidArgument: For negative principal or rate
        """
        if not self.get_borrower(borrower_id):
            raise NotFound(f"Borrower {borrower_id} not found")

        principal_money = self._to_money(principal, currency)
        rate = to_decimal(interest_rate)
        self._validate_terms(principal_money, rate)

        now = datetime.now(timezone.utc)
        loan = Loan(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            borrower_id=borrower_id,
            principal=principal_money,
            interest_rate=rate,
            rate_type=RateType(rate_type),
            start_date=parse_date(start_date),
            status=LoanStatus(status),
            notes=notes
        )
        self._save_loan(loan)
        return loan

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return self._loan_from_dict(data)
        return None

    def require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise NotFound(f"Loan {loan_id} not found")
        return loan

    def list_loans(self, status: Optional[LoanStatus] = None,
                   borrower_id: Optional[str] = None) -> List[Loan]:
        filters: Dict[str, Any] = {}
        if status is not None:
            filters['status'] = LoanStatus(status).value
        if borrower_id is not None:
            filters['borrower_id'] = borrower_id
        loans = [self._loan_from_dict(d) for d in self.storage.find(self.loans_table, filters)]
        loans.sort(key=lambda loan: (loan.start_date, loan.id))
        return loans

    def update_loan(self, loan_id: str, **changes) -> Loan:
        """
        Edit loan terms or status.

        Supported keys: principal, interest_rate, rate_type, start_date,
        status, notes.
        """
        loan = self.require_loan(loan_id)
        unknown = set(changes) - {'principal', 'interest_rate', 'rate_type', 'start_date', 'status', 'notes'}
        if unknown:
            raise InvalidArgument(f"Cannot update loan fields: {', '.join(sorted(unknown))}")

        if 'principal' in changes:
            loan.principal = self._to_money(changes['principal'], loan.currency)
        if 'interest_rate' in changes:
            loan.interest_rate = to_decimal(changes['interest_rate'])
        if 'rate_type' in changes:
            loan.rate_type = RateType(changes['rate_type'])
        if 'start_date' in changes:
            loan.start_date = parse_date(changes['start_date'])
        if 'status' in changes:
            loan.status = LoanStatus(changes['status'])
        if 'notes' in changes:
            loan.notes = changes['notes']

        self._validate_terms(loan.principal, loan.interest_rate)
        loan.updated_at = datetime.now(timezone.utc)
        self._save_loan(loan)
        return loan

    def delete_loan(self, loan_id: str) -> bool:
        """Delete a loan and its payments"""
        for payment in self.list_payments(loan_id=loan_id):
            self.storage.delete(self.payments_table, payment.id)
        return self.storage.delete(self.loans_table, loan_id)

    # Payments

    def record_payment(
        self,
        loan_id: str,
        amount: Any,
        payment_date: date,
        payment_type: PaymentType,
        payment_method: str = "cash",
        interest_cleared_till: Optional[date] = None,
        notes: str = ""
    ) -> Payment:
        loan = self.require_loan(loan_id)
        money = self._to_money(amount, loan.currency)
        if money.is_negative():
            raise InvalidArgument("Payment amount cannot be negative")

        now = datetime.now(timezone.utc)
        payment = Payment(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            loan_id=loan_id,
            amount=money,
            payment_date=parse_date(payment_date),
            payment_type=PaymentType(payment_type),
            payment_method=payment_method,
            interest_cleared_till=parse_date(interest_cleared_till) if interest_cleared_till else None,
            notes=notes
        )
        self.storage.save(self.payments_table, payment.id, self._payment_to_dict(payment))
        return payment

    def list_payments(self, loan_id: Optional[str] = None) -> List[Payment]:
        filters = {'loan_id': loan_id} if loan_id else {}
        payments = [self._payment_from_dict(d) for d in self.storage.find(self.payments_table, filters)]
        payments.sort(key=lambda p: (p.payment_date, p.created_at))
        return payments

    def payments_for_loans(self, loans: Iterable[Loan]) -> List[Payment]:
        loan_ids = {loan.id for loan in loans}
        return [p for p in self.list_payments() if p.loan_id in loan_ids]

    # Serialization helpers

    def _to_money(self, value: Any, currency: Optional[Currency]) -> Money:
        if isinstance(value, Money):
            return value
        return Money(to_decimal(value), currency or self.default_currency)

    @staticmethod
    def _validate_terms(principal: Money, rate: Decimal) -> None:
        if principal.is_negative():
            raise InvalidArgument("Principal cannot be negative")
        if not rate.is_finite() or rate < Decimal('0'):
            raise InvalidArgument("Interest rate must be a non-negative number")

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.loans_table, loan.id, self._loan_to_dict(loan))

    @staticmethod
    def _loan_to_dict(loan: Loan) -> Dict[str, Any]:
        return {
            'id': loan.id,
            'created_at': loan.created_at.isoformat(),
            'updated_at': loan.updated_at.isoformat(),
            'borrower_id': loan.borrower_id,
            'principal': str(loan.principal.amount),
            'currency': loan.principal.currency.code,
            'interest_rate': str(loan.interest_rate),
            'rate_type': loan.rate_type.value,
            'start_date': loan.start_date.isoformat(),
            'status': loan.status.value,
            'notes': loan.notes
        }

    @staticmethod
    def _loan_from_dict(data: Dict[str, Any]) -> Loan:
        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            borrower_id=data['borrower_id'],
            principal=Money(Decimal(data['principal']), Currency[data['currency']]),
            interest_rate=Decimal(data['interest_rate']),
            rate_type=RateType(data['rate_type']),
            start_date=date.fromisoformat(data['start_date']),
            status=LoanStatus(data.get('status', 'active')),
            notes=data.get('notes', "")
        )

    @staticmethod
    def _borrower_from_dict(data: Dict[str, Any]) -> Borrower:
        return Borrower(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            name=data['name'],
            email=data.get('email', ""),
            phone=data.get('phone', ""),
            status=data.get('status', "active")
        )

    @staticmethod
    def _payment_to_dict(payment: Payment) -> Dict[str, Any]:
        return {
            'id': payment.id,
            'created_at': payment.created_at.isoformat(),
            'updated_at': payment.updated_at.isoformat(),
            'loan_id': payment.loan_id,
            'amount': str(payment.amount.amount),
            'currency': payment.amount.currency.code,
            'payment_date': payment.payment_date.isoformat(),
            'payment_type': payment.payment_type.value,
            'payment_method': payment.payment_method,
            'interest_cleared_till': (
                payment.interest_cleared_till.isoformat() if payment.interest_cleared_till else None
            ),
            'notes': payment.notes
        }

    @staticmethod
    def _payment_from_dict(data: Dict[str, Any]) -> Payment:
        cleared = data.get('interest_cleared_till')
        return Payment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            amount=Money(Decimal(data['amount']), Currency[data['currency']]),
            payment_date=date.fromisoformat(data['payment_date']),
            payment_type=PaymentType(data['payment_type']),
            payment_method=data.get('payment_method', "cash"),
            interest_cleared_till=date.fromisoformat(cleared) if cleared else None,
            notes=data.get('notes', "")
        )
