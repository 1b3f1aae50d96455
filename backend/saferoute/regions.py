from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from .geo import BoundingBox


@dataclass(frozen=True)
class Region:
    name: str
    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    @property
    def box(self) -> BoundingBox:
        return BoundingBox(
            min_lat=self.min_lat,
            max_lat=self.max_lat,
            min_lng=self.min_lng,
            max_lng=self.max_lng,
        )

    def contains(self, lat: float, lng: float) -> bool:
        return self.min_lat <= lat <= self.max_lat and self.min_lng <= lng <= self.max_lng


# District boxes. Several overlap; catalog order decides.
REGIONS: tuple[Region, ...] = (
    Region("Bagerhat", 21.80, 89.40, 22.90, 89.95),
    Region("Bandarban", 21.10, 92.15, 22.00, 92.70),
    Region("Barguna", 21.80, 89.90, 22.60, 90.30),
    Region("Barisal", 22.30, 90.10, 22.90, 90.50),
    Region("Bhola", 21.90, 90.50, 22.90, 91.10),
    Region("Bogra", 24.50, 88.90, 25.10, 89.60),
    Region("Brahmanbaria", 23.60, 90.80, 24.20, 91.30),
    Region("Chandpur", 23.00, 90.55, 23.60, 91.00),
    Region("Chapai Nawabganj", 24.40, 88.00, 24.90, 88.40),
    Region("Chattogram", 21.90, 91.60, 22.80, 92.20),
    Region("Chuadanga", 23.30, 88.70, 23.70, 89.10),
    Region("Cox's Bazar", 20.85, 91.80, 21.90, 92.30),
    Region("Cumilla", 23.20, 90.90, 24.00, 91.30),
    Region("Dhaka", 23.60, 90.20, 24.00, 90.60),
    Region("Dinajpur", 25.30, 88.40, 26.10, 89.00),
    Region("Faridpur", 23.10, 89.50, 23.80, 90.10),
    Region("Feni", 22.75, 91.30, 23.15, 91.55),
    Region("Gaibandha", 25.00, 89.30, 25.50, 89.70),
    Region("Gazipur", 23.90, 90.20, 24.30, 90.60),
    Region("Gopalganj", 22.90, 89.80, 23.40, 90.20),
    Region("Habiganj", 24.00, 91.10, 24.60, 91.50),
    Region("Jamalpur", 24.60, 89.70, 25.30, 90.30),
    Region("Jashore", 23.00, 88.80, 23.60, 89.40),
    Region("Jhalokati", 22.30, 90.00, 22.70, 90.30),
    Region("Jhenaidah", 23.10, 88.90, 23.70, 89.40),
    Region("Joypurhat", 24.80, 88.90, 25.20, 89.30),
    Region("Khagrachari", 22.90, 91.80, 23.50, 92.30),
    Region("Khulna", 22.60, 89.30, 23.10, 89.70),
    Region("Kishoreganj", 24.10, 90.70, 24.60, 91.20),
    Region("Kurigram", 25.60, 89.30, 26.20, 89.80),
    Region("Kushtia", 23.70, 88.90, 24.10, 89.30),
    Region("Lakshmipur", 22.60, 90.70, 23.10, 91.10),
    Region("Lalmonirhat", 25.80, 89.20, 26.30, 89.60),
    Region("Madaripur", 23.00, 89.90, 23.50, 90.30),
    Region("Magura", 23.20, 89.20, 23.60, 89.60),
    Region("Manikganj", 23.70, 89.90, 24.10, 90.20),
    Region("Meherpur", 23.60, 88.50, 23.90, 88.80),
    Region("Moulvibazar", 24.10, 91.40, 24.70, 92.00),
    Region("Munshiganj", 23.30, 90.30, 23.70, 90.70),
    Region("Mymensingh", 24.40, 90.10, 25.00, 90.60),
    Region("Naogaon", 24.60, 88.50, 25.10, 89.10),
    Region("Narail", 23.00, 89.30, 23.40, 89.70),
    Region("Narayanganj", 23.50, 90.40, 23.90, 90.70),
    Region("Narsingdi", 23.70, 90.60, 24.10, 91.00),
    Region("Natore", 24.20, 88.80, 24.80, 89.30),
    Region("Netrokona", 24.60, 90.80, 25.20, 91.20),
    Region("Nilphamari", 25.80, 88.80, 26.30, 89.30),
    Region("Noakhali", 22.60, 90.90, 23.20, 91.30),
    Region("Pabna", 23.70, 89.00, 24.30, 89.60),
    Region("Panchagarh", 26.20, 88.30, 26.60, 88.60),
    Region("Patuakhali", 21.80, 90.10, 22.60, 90.60),
    Region("Pirojpur", 22.30, 89.90, 22.80, 90.30),
    Region("Rajbari", 23.40, 89.40, 23.90, 89.80),
    Region("Rajshahi", 24.20, 88.40, 24.70, 88.80),
    Region("Rangamati", 22.40, 91.80, 23.30, 92.40),
    Region("Rangpur", 25.50, 88.90, 25.90, 89.40),
    Region("Satkhira", 21.80, 88.90, 22.70, 89.30),
    Region("Shariatpur", 23.00, 90.20, 23.50, 90.60),
    Region("Sherpur", 24.90, 89.90, 25.30, 90.30),
    Region("Sirajganj", 24.10, 89.30, 24.80, 89.90),
    Region("Sunamganj", 24.60, 90.90, 25.20, 91.50),
    Region("Sylhet", 24.50, 91.60, 25.10, 92.10),
    Region("Tangail", 24.00, 89.80, 24.70, 90.40),
    Region("Thakurgaon", 25.80, 88.20, 26.30, 88.60),
)


def find_region(lat: float, lng: float, *, catalog: Sequence[Region] = REGIONS) -> Region | None:
    for region in catalog:
        if region.contains(lat, lng):
            return region
    return None

