"""
Request-scoped copies of backend entities.

Nothing here is persisted locally; the backend API and the auth service own
every record. `from_dict` tolerates missing keys since list and detail
endpoints return different subsets.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from app.pantbrev.constants import DEED_STATUS_ACTIONS, DEED_STATUS_LABELS, ROLE_BANK_USER, DeedStatus
from app.pantbrev.utils import parse_percentage


def _str(value: Any) -> str:
    return "" if value is None else str(value)


@dataclass(frozen=True)
class User:
    id: str
    email: str
    user_name: str
    role: str | None = None
    bank_id: str | None = None
    bank_name: str | None = None
    phone: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    person_number: str | None = None

    @property
    def is_bank_user(self) -> bool:
        return self.role == ROLE_BANK_USER

    @classmethod
    def from_auth(cls, user_id: str, email: str | None, metadata: dict[str, Any] | None) -> "User":
        meta = metadata or {}
        email = email or ""
        user_name = meta.get("user_name") or (email.split("@")[0] if email else "") or "User"
        bank_id = meta.get("bank_id")
        return cls(
            id=str(user_id),
            email=email,
            user_name=user_name,
            role=meta.get("role"),
            bank_id=None if bank_id is None else str(bank_id),
            bank_name=meta.get("bank_name"),
            phone=meta.get("phone"),
            first_name=meta.get("first_name"),
            last_name=meta.get("last_name"),
            person_number=meta.get("person_number"),
        )

    def to_session(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_session(cls, data: dict[str, Any]) -> "User":
        return cls(**{k: data.get(k) for k in cls.__dataclass_fields__})  # type: ignore[arg-type]


@dataclass
class HousingCooperative:
    id: int | None
    name: str
    organisation_number: str
    address: str = ""
    postal_code: str = ""
    city: str = ""
    administrator_company: str | None = None
    administrator_name: str = ""
    administrator_person_number: str = ""
    administrator_email: str = ""
    accounting_firm_name: str | None = None
    accounting_firm_email: str | None = None
    created_at: str | None = None
    created_by: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "HousingCooperative":
        return cls(
            id=d.get("id"),
            name=_str(d.get("name")),
            organisation_number=_str(d.get("organisation_number") or d.get("organization_number")),
            address=_str(d.get("address")),
            postal_code=_str(d.get("postal_code")),
            city=_str(d.get("city")),
            administrator_company=d.get("administrator_company"),
            administrator_name=_str(d.get("administrator_name")),
            administrator_person_number=_str(d.get("administrator_person_number")),
            administrator_email=_str(d.get("administrator_email")),
            accounting_firm_name=d.get("accounting_firm_name"),
            accounting_firm_email=d.get("accounting_firm_email"),
            created_at=d.get("created_at"),
            created_by=d.get("created_by"),
        )


@dataclass
class Borrower:
    name: str
    person_number: str
    email: str
    ownership_percentage: float
    id: int | None = None
    signature_timestamp: str | None = None

    @property
    def has_signed(self) -> bool:
        return bool(self.signature_timestamp)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Borrower":
        return cls(
            id=d.get("id"),
            name=_str(d.get("name")),
            person_number=_str(d.get("person_number")),
            email=_str(d.get("email")),
            ownership_percentage=parse_percentage(d.get("ownership_percentage")) or 0.0,
            signature_timestamp=d.get("signature_timestamp"),
        )


@dataclass
class HousingCooperativeSigner:
    administrator_name: str
    administrator_person_number: str
    administrator_email: str
    signature_timestamp: str | None = None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "HousingCooperativeSigner":
        return cls(
            administrator_name=_str(d.get("administrator_name")),
            administrator_person_number=_str(d.get("administrator_person_number")),
            administrator_email=_str(d.get("administrator_email")),
            signature_timestamp=d.get("signature_timestamp"),
        )


@dataclass
class MortgageDeed:
    id: int
    credit_number: str
    housing_cooperative_id: int | None
    apartment_number: str
    apartment_address: str
    apartment_postal_code: str
    apartment_city: str
    status: str
    created_at: str | None = None
    credit_numbers: list[str] = field(default_factory=list)
    borrowers: list[Borrower] = field(default_factory=list)
    housing_cooperative: HousingCooperative | None = None
    housing_cooperative_signers: list[HousingCooperativeSigner] = field(default_factory=list)
    has_existing_mortgages: bool = False
    existing_mortgage_bank: str | None = None
    existing_mortgage_date: str | None = None
    notes: str | None = None

    @property
    def status_label(self) -> str:
        try:
            return DEED_STATUS_LABELS[DeedStatus(self.status)]
        except ValueError:
            return self.status

    @property
    def action_label(self) -> str:
        try:
            return DEED_STATUS_ACTIONS[DeedStatus(self.status)]
        except ValueError:
            return "Visa"

    @property
    def is_editable(self) -> bool:
        return self.status == DeedStatus.CREATED.value

    @property
    def ownership_total(self) -> float:
        return round(sum(b.ownership_percentage for b in self.borrowers), 2)

    @property
    def all_credit_numbers(self) -> list[str]:
        numbers = [n for n in self.credit_numbers if n]
        if self.credit_number and self.credit_number not in numbers:
            numbers.insert(0, self.credit_number)
        return numbers

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "MortgageDeed":
        coop = d.get("housing_cooperative")
        credit_numbers = [_str(n) for n in (d.get("credit_numbers") or []) if n not in (None, "")]
        credit_number = _str(d.get("credit_number")) or (credit_numbers[0] if credit_numbers else "")
        return cls(
            id=int(d["id"]),
            credit_number=credit_number,
            credit_numbers=credit_numbers,
            housing_cooperative_id=d.get("housing_cooperative_id") or (coop or {}).get("id"),
            apartment_number=_str(d.get("apartment_number")),
            apartment_address=_str(d.get("apartment_address")),
            apartment_postal_code=_str(d.get("apartment_postal_code")),
            apartment_city=_str(d.get("apartment_city")),
            status=_str(d.get("status")) or DeedStatus.CREATED.value,
            created_at=d.get("created_at"),
            borrowers=[Borrower.from_dict(b) for b in d.get("borrowers") or []],
            housing_cooperative=HousingCooperative.from_dict(coop) if isinstance(coop, dict) else None,
            housing_cooperative_signers=[
                HousingCooperativeSigner.from_dict(s) for s in d.get("housing_cooperative_signers") or []
            ],
            has_existing_mortgages=bool(d.get("has_existing_mortgages")),
            existing_mortgage_bank=d.get("existing_mortgage_bank"),
            existing_mortgage_date=d.get("existing_mortgage_date"),
            notes=d.get("notes"),
        )


@dataclass(frozen=True)
class AuditLogEntry:
    id: int | None
    deed_id: int | None
    action_type: str
    user_id: str | None
    description: str
    timestamp: str | None

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "AuditLogEntry":
        return cls(
            id=d.get("id"),
            deed_id=d.get("deed_id"),
            action_type=_str(d.get("action_type")),
            user_id=d.get("user_id"),
            description=_str(d.get("description")),
            timestamp=d.get("timestamp"),
        )

    @property
    def is_destructive(self) -> bool:
        return "REMOVED" in self.action_type or "DELETED" in self.action_type


@dataclass(frozen=True)
class Pagination:
    total_count: int = 0
    total_pages: int = 0
    current_page: int = 1
    page_size: int = 10

    @property
    def has_prev(self) -> bool:
        return self.current_page > 1

    @property
    def has_next(self) -> bool:
        return self.current_page < self.total_pages

    @classmethod
    def from_headers(cls, headers: Any) -> "Pagination":
        def _int(name: str, default: int) -> int:
            try:
                return int(headers.get(name) or default)
            except (TypeError, ValueError):
                return default

        return cls(
            total_count=_int("X-Total-Count", 0),
            total_pages=_int("X-Total-Pages", 0),
            current_page=_int("X-Current-Page", 1),
            page_size=_int("X-Page-Size", 10),
        )


@dataclass(frozen=True)
class StatsSummary:
    total_deeds: int = 0
    total_cooperatives: int = 0
    status_distribution: dict[str, int] = field(default_factory=dict)
    average_borrowers_per_deed: float = 0.0

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "StatsSummary":
        return cls(
            total_deeds=int(d.get("total_deeds") or 0),
            total_cooperatives=int(d.get("total_cooperatives") or 0),
            status_distribution={str(k): int(v or 0) for k, v in (d.get("status_distribution") or {}).items()},
            average_borrowers_per_deed=float(d.get("average_borrowers_per_deed") or 0.0),
        )

    def count_for(self, status: DeedStatus) -> int:
        return self.status_distribution.get(status.value, 0)

    @property
    def pending_signatures(self) -> int:
        return self.count_for(DeedStatus.PENDING_BORROWER_SIGNATURE) + self.count_for(
            DeedStatus.PENDING_HOUSING_COOPERATIVE_SIGNATURE
        )
