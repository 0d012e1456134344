"""
Geofence validation service.
Uses Haversine formula to calculate distance between an observed clock
location and the expected service location, and classifies the result
as valid, gps_warning or gps_violation.
"""
import math
from dataclasses import dataclass, field
from typing import Optional, List

from ..config import settings
from .errors import ClockIssueCode

# Earth radius in meters
EARTH_RADIUS_M = 6371000

STATUS_VALID = "valid"
STATUS_WARNING = "gps_warning"
STATUS_VIOLATION = "gps_violation"


@dataclass(frozen=True)
class GeoPoint:
    latitude: float
    longitude: float
    accuracy: Optional[float] = None  # meters


@dataclass
class GeoEvaluation:
    status: str = STATUS_VALID
    compliant: bool = True
    skipped: bool = False
    distance_m: Optional[float] = None
    radius_m: Optional[float] = None
    errors: List[tuple] = field(default_factory=list)  # (ClockIssueCode, message)
    warnings: List[tuple] = field(default_factory=list)

    @property
    def is_violation(self) -> bool:
        return self.status == STATUS_VIOLATION


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Calculate the great circle distance between two points on Earth.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in meters
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2 +
        math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.2f}km"


def validate_coordinates(latitude: float, longitude: float) -> List[str]:
    """Return range problems with a coordinate pair (empty when usable)."""
    problems = []
    if latitude < -90 or latitude > 90:
        problems.append(f"Invalid latitude: {latitude}. Must be between -90 and 90.")
    if longitude < -180 or longitude > 180:
        problems.append(f"Invalid longitude: {longitude}. Must be between -180 and 180.")
    # (0, 0) is what most devices report when location services are off
    if latitude == 0 and longitude == 0:
        problems.append("Coordinates appear to be default (0,0) - GPS may not be enabled")
    return problems


def evaluate_location(
    observed: GeoPoint,
    expected: Optional[GeoPoint],
    radius_m: Optional[float] = None,
    accuracy_threshold_m: Optional[float] = None,
) -> GeoEvaluation:
    """
    Classify an observed clock location against the expected location.

    Args:
        observed: Device coordinates (with optional accuracy)
        expected: Service location, or None when there is nothing to check against
        radius_m: Compliance radius (default from settings)
        accuracy_threshold_m: Accuracy above which a warning is raised (default from settings)

    Returns:
        GeoEvaluation. No side effects; persisting it is up to the caller.
    """
    if expected is None:
        return GeoEvaluation(skipped=True)

    if radius_m is None:
        radius_m = float(settings.geo_radius_m_default)
    if accuracy_threshold_m is None:
        accuracy_threshold_m = float(settings.gps_accuracy_warn_m)

    result = GeoEvaluation(radius_m=radius_m)

    observed_problems = validate_coordinates(observed.latitude, observed.longitude)
    if observed_problems:
        result.status = STATUS_VIOLATION
        result.compliant = False
        result.errors.extend((ClockIssueCode.INVALID_COORDINATES, p) for p in observed_problems)
        return result

    if validate_coordinates(expected.latitude, expected.longitude):
        result.status = STATUS_VIOLATION
        result.compliant = False
        result.errors.append((ClockIssueCode.INVALID_COORDINATES, "Expected coordinates are invalid"))
        return result

    distance = haversine_distance(
        observed.latitude, observed.longitude, expected.latitude, expected.longitude
    )
    result.distance_m = distance

    if distance > radius_m:
        result.status = STATUS_VIOLATION
        result.compliant = False
        result.errors.append((
            ClockIssueCode.GPS_VIOLATION,
            f"Clock event location is {format_distance(distance)} away from expected location (threshold: {format_distance(radius_m)})",
        ))
        return result

    if observed.accuracy is not None and observed.accuracy > accuracy_threshold_m:
        result.warnings.append((
            ClockIssueCode.GPS_ACCURACY_WARNING,
            f"GPS accuracy ({format_distance(observed.accuracy)}) exceeds recommended threshold "
            f"({format_distance(accuracy_threshold_m)}). Location may be inaccurate.",
        ))

    if distance > radius_m * settings.geo_edge_warning_ratio:
        result.warnings.append((
            ClockIssueCode.GPS_WARNING,
            f"Location is near the edge of approved radius ({format_distance(distance)} of {format_distance(radius_m)})",
        ))

    if result.warnings:
        result.status = STATUS_WARNING
    return result
