"""Login signal detectors.

``build_detectors()`` returns one instance of each detector in evaluation
order; the order also fixes the order of suspicion reasons.
"""

from .base import LoginDetector
from .device import NewDeviceDetector
from .geo import GeographicJumpDetector
from .reputation import (
    IpReputationDetector,
    IpReputationList,
    NullReputationList,
    StaticReputationList,
)
from .velocity import ConcurrentSessionsDetector, LoginFrequencyDetector, UnusualTimeDetector


def build_detectors(reputation_list: IpReputationList | None = None) -> list[LoginDetector]:
    return [
        GeographicJumpDetector(),
        ConcurrentSessionsDetector(),
        LoginFrequencyDetector(),
        NewDeviceDetector(),
        IpReputationDetector(reputation_list),
        UnusualTimeDetector(),
    ]


__all__ = [
    "ConcurrentSessionsDetector",
    "GeographicJumpDetector",
    "IpReputationDetector",
    "IpReputationList",
    "LoginDetector",
    "LoginFrequencyDetector",
    "NewDeviceDetector",
    "NullReputationList",
    "StaticReputationList",
    "UnusualTimeDetector",
    "build_detectors",
]
