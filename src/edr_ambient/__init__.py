"""edr-ambient library modules."""

from .auto_control import AutoController, ControlState
from .calibration import CalibrationAnchor, LuxCalibrator
from .cap_model import CapDetails, compute_cap
from .controller import Controller, ControllerSnapshot, EdrSupport
from .display import DisplayBackend, DisplayHeadroom, GainApplyError, StaticDisplayBackend
from .gain import factor_for_percent, percent_for_factor
from .profiles import PROFILES, AutoProfile, get_profile
from .sampler import ALSSampler, IlluminanceEstimate
from .scheduler import Scheduler
from .settings import Settings

__all__ = [
    "ALSSampler",
    "AutoController",
    "AutoProfile",
    "CalibrationAnchor",
    "CapDetails",
    "ControlState",
    "Controller",
    "ControllerSnapshot",
    "DisplayBackend",
    "DisplayHeadroom",
    "EdrSupport",
    "GainApplyError",
    "IlluminanceEstimate",
    "LuxCalibrator",
    "PROFILES",
    "Scheduler",
    "Settings",
    "StaticDisplayBackend",
    "compute_cap",
    "factor_for_percent",
    "get_profile",
    "percent_for_factor",
]
