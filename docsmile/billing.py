"""Payment arithmetic: totals, discounts and payment-method splits.

Totals are derived, never stored by hand: every change to a line item, a
quantity or the discount goes through compute_totals so no stale total can
be shown or submitted.
"""
from typing import Any, Iterable, List, Mapping, NamedTuple, Optional, Union

from docsmile import config
from docsmile.models import (
    DentalService,
    PaymentCreate,
    PaymentItem,
    PaymentMethodEntry,
)
from docsmile.taxonomy import DiscountType, PaymentMethod


class Totals(NamedTuple):
    """Computed payment totals."""
    subtotal: float
    discount_amount: float
    total: float


def _read(item: Any, *names: str, default: float = 0) -> Any:
    """Read the first present field from a mapping or an object."""
    for name in names:
        if isinstance(item, Mapping):
            if item.get(name) is not None:
                return item[name]
        elif getattr(item, name, None) is not None:
            return getattr(item, name)
    return default


def line_total(unit_price: float, quantity: int) -> float:
    """Price of one line: unit price times quantity."""
    return float(unit_price) * int(quantity)


def compute_totals(
    line_items: Iterable[Any],
    discount: float = 0,
    discount_type: Union[DiscountType, str] = DiscountType.PERCENTAGE
) -> Totals:
    """
    Compute subtotal, discount amount and final total.

    Args:
        line_items: Items with unit_price (or unitPrice) and quantity
        discount: Percentage (0-100) or fixed currency amount
        discount_type: "percentage" or "fixed"

    Returns:
        Totals with total clamped at zero

    Example:
        >>> compute_totals([{"unit_price": 300, "quantity": 1}], 10, "percentage")
        Totals(subtotal=300.0, discount_amount=30.0, total=270.0)
    """
    discount_type = DiscountType.parse(discount_type)

    subtotal = sum(
        line_total(
            _read(item, "unit_price", "unitPrice"),
            _read(item, "quantity", default=1)
        )
        for item in line_items
    )
    subtotal = float(subtotal)

    discount = float(discount or 0)
    if discount_type == DiscountType.PERCENTAGE:
        discount_amount = subtotal * discount / 100
    else:
        discount_amount = discount

    total = max(0.0, subtotal - discount_amount)
    return Totals(subtotal=subtotal, discount_amount=discount_amount, total=total)


def validate_split(
    methods: Iterable[Any],
    total: float,
    tolerance: Optional[float] = None
) -> bool:
    """
    Check that payment-method amounts add up to the total.

    Args:
        methods: Entries with an amount field
        total: Final payment total
        tolerance: Allowed difference (default: 0.01)
    """
    if tolerance is None:
        tolerance = config.PAYMENT_TOLERANCE
    paid = sum(float(_read(method, "amount")) for method in methods)
    # float noise below 1e-9 is ignored at the tolerance edge
    return round(abs(paid - float(total)), 9) <= tolerance


def calculate_change(amount_paid: float, final_amount: float) -> float:
    """Change to hand back for a cash payment (never negative)."""
    return max(0.0, float(amount_paid) - float(final_amount))


def applied_line_total(price: float, quantity: int, discount: float = 0) -> float:
    """Total of an applied-service line with a percentage line discount."""
    subtotal = line_total(price, quantity)
    return subtotal - (subtotal * float(discount or 0)) / 100


def sum_applied_totals(records: Iterable[Any]) -> float:
    """Sum of total_amount across applied-service records."""
    return float(sum(_read(record, "total_amount", "totalAmount") for record in records))


class PaymentDraft:
    """
    Payment being edited: items, discount and payment-method split.

    Any change to items, quantities or the discount recomputes the totals and
    resets the split to a single entry (the first method) carrying the full
    total. Splitting across several methods is done after the amounts are
    settled, and validate_split gates submission.
    """

    def __init__(
        self,
        discount: float = 0,
        discount_type: Union[DiscountType, str] = DiscountType.PERCENTAGE,
        method: Union[PaymentMethod, str] = PaymentMethod.CASH
    ):
        self.items: List[PaymentItem] = []
        self.discount = float(discount)
        self.discount_type = DiscountType.parse(discount_type)
        self.methods: List[PaymentMethodEntry] = [
            PaymentMethodEntry(method=PaymentMethod.parse(method), amount=0)
        ]
        self.totals = Totals(0.0, 0.0, 0.0)
        self._recompute()

    @property
    def subtotal(self) -> float:
        return self.totals.subtotal

    @property
    def total(self) -> float:
        return self.totals.total

    def add_service(self, service: DentalService, quantity: int = 1) -> PaymentItem:
        """Add a catalog service as a line item."""
        return self.add_item(
            service_id=service.id,
            name=service.name,
            unit_price=service.price,
            quantity=quantity,
            category=service.category.value,
        )

    def add_item(
        self,
        service_id: str,
        name: str,
        unit_price: float,
        quantity: int = 1,
        category: Optional[str] = None
    ) -> PaymentItem:
        quantity = max(1, int(quantity))
        item = PaymentItem(
            service=service_id,
            service_name=name,
            category=category,
            quantity=quantity,
            unit_price=unit_price,
            total=line_total(unit_price, quantity),
        )
        self.items.append(item)
        self._recompute()
        return item

    def remove_item(self, index: int):
        del self.items[index]
        self._recompute()

    def set_quantity(self, index: int, quantity: int):
        """Change a line's quantity (at least 1)."""
        item = self.items[index]
        quantity = max(1, int(quantity))
        self.items[index] = item.model_copy(update={
            "quantity": quantity,
            "total": line_total(item.unit_price, quantity),
        })
        self._recompute()

    def set_discount(self, discount: float, discount_type: Union[DiscountType, str, None] = None):
        self.discount = float(discount or 0)
        if discount_type is not None:
            self.discount_type = DiscountType.parse(discount_type)
        self._recompute()

    def split(self, entries: Iterable[Any]):
        """Replace the payment-method split (method, amount, reference)."""
        self.methods = [
            entry if isinstance(entry, PaymentMethodEntry) else PaymentMethodEntry(**entry)
            for entry in entries
        ]

    def is_split_valid(self) -> bool:
        return validate_split(self.methods, self.total)

    def _recompute(self):
        self.totals = compute_totals(self.items, self.discount, self.discount_type)
        first = self.methods[0] if self.methods else PaymentMethodEntry(
            method=PaymentMethod.CASH, amount=0
        )
        self.methods = [first.model_copy(update={"amount": self.totals.total})]

    def to_request(
        self,
        patient_id: str,
        appointment_id: Optional[str] = None,
        notes: str = ""
    ) -> PaymentCreate:
        """Build the create-payment payload from the current state."""
        return PaymentCreate(
            patient=patient_id,
            appointment=appointment_id,
            services=list(self.items),
            subtotal=self.totals.subtotal,
            discount=self.discount,
            discount_type=self.discount_type,
            total=self.totals.total,
            payment_methods=list(self.methods),
            notes=notes,
        )
