from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Dict, Optional, Tuple


class VehicleType(str, Enum):
    TWO_WHEELER = "2-Wheeler"
    FOUR_WHEELER = "4-Wheeler"
    TRUCK = "Truck"
    OTHER = "Other"

    @classmethod
    def parse(cls, value) -> "VehicleType":
        for member in cls:
            if member.value == value or member.name == value:
                return member
        return cls.OTHER


class RegistrationStatus(str, Enum):
    VALID = "Valid"
    EXPIRED = "Expired"


class InsuranceStatus(str, Enum):
    ACTIVE = "Active"
    EXPIRED = "Expired"


class PollutionStatus(str, Enum):
    VALID = "Valid"
    EXPIRED = "Expired"


class TaxStatus(str, Enum):
    PAID = "Paid"
    DUE = "Due"


class DiscrepancyFlag(str, Enum):
    OK = "OK"
    SUSPICIOUS = "Suspicious"
    POTENTIAL_CHARGER_FAULT = "Potential Charger Fault"


@dataclass(frozen=True)
class Transaction:
    timestamp: str
    plate: str
    billed_kwh: float
    amount: float
    charger_id: str
    extra: Dict[str, str] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Detection:
    plate: str
    vehicle_type: VehicleType
    helmet: Optional[bool]  # None = 判定不能
    detected_kwh: float
    timestamp: str = ""


@dataclass(frozen=True)
class RegistryRecord:
    owner: str
    vehicle_type: str
    registration_valid_till: date
    insurance_status: InsuranceStatus
    pollution_valid_till: date
    pending_fine: int
    fine_reason: str
    road_tax_status: TaxStatus


@dataclass(frozen=True)
class ChargingCheck:
    billed: float
    detected: float
    difference: float
    discrepancy_flag: DiscrepancyFlag


@dataclass(frozen=True)
class ComplianceResult:
    score: int
    registration_status: RegistrationStatus
    insurance_status: InsuranceStatus
    puc_status: PollutionStatus
    tax_status: TaxStatus
    fine_status: str
    overall_status: Tuple[str, ...]


@dataclass(frozen=True)
class ScoredVehicle:
    plate: str
    vehicle_type: VehicleType
    helmet: Optional[bool]
    registry: Optional[RegistryRecord]
    charging: ChargingCheck
    compliance: ComplianceResult
    registry_found: bool = True
    detection_found: bool = True

    @property
    def pending_fine(self) -> int:
        return self.registry.pending_fine if self.registry else 0

    @property
    def fine_reason(self) -> str:
        return self.registry.fine_reason if self.registry else "None"


@dataclass(frozen=True)
class FleetStats:
    vehicle_count: int
    mean_score: float
    violation_histogram: Dict[str, int]
    discrepancy_count: int
