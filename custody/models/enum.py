# custody/models/enum.py
from enum import Enum


class AssetStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"             # Disetujui, menunggu pickup
    IN_USE = "in_use"                 # Sudah diterima peminjam
    MAINTENANCE = "maintenance"       # Dikembalikan dalam kondisi rusak
    OUT_OF_SERVICE = "out_of_service"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        return self in (ReservationStatus.REJECTED, ReservationStatus.CANCELLED, ReservationStatus.COMPLETED)


class ItemCondition(str, Enum):
    GOOD = "good"
    DAMAGE = "damage"


class CustodyEvent(str, Enum):
    RECEIPT = "receipt"
    RETURN = "return"
