"""Device capability probing.

The probe runs once at start-up and its result is threaded through the
configuration instead of being re-queried.

Tiers:
    - "full": >= 16 GB RAM (or unknown) and not a low-power laptop -> reasoning enabled
    - "lite": < 16 GB RAM, or a low-power laptop -> reasoning disabled
    - "blocked": < 8 GB RAM -> local generation is not attempted
"""

from __future__ import annotations

import logging
import os
import platform
from dataclasses import dataclass
from typing import Literal

LOGGER = logging.getLogger(__name__)

DeviceTier = Literal["full", "lite", "blocked"]

_LOW_POWER_MARKERS = ("surface", "latitude")


@dataclass(slots=True, frozen=True)
class DeviceProfile:
    tier: DeviceTier
    ram_gb: float | None
    has_gpu: bool
    gpu_type: str | None
    low_power: bool

    @property
    def reasoning_enabled(self) -> bool:
        return self.tier == "full"

    @property
    def can_generate(self) -> bool:
        return self.tier != "blocked"


def _check_gpu_availability() -> tuple[bool, str | None]:
    """Check if a GPU is usable by torch and return its type.

    Returns:
        (has_gpu, gpu_type) where gpu_type is "cuda", "mps", "rocm" or None.
    """
    try:
        import torch

        if torch.cuda.is_available():
            if getattr(torch.version, "hip", None) is not None:
                LOGGER.debug("AMD ROCm GPU detected")
                return (True, "rocm")
            LOGGER.debug(f"CUDA GPU detected: {torch.cuda.get_device_name(0)}")
            return (True, "cuda")

        if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
            LOGGER.debug("Apple MPS GPU detected")
            return (True, "mps")

        LOGGER.debug("No GPU detected, will use CPU")
        return (False, None)
    except ImportError:
        LOGGER.debug("PyTorch not available for GPU detection")
        return (False, None)
    except Exception as e:
        LOGGER.debug(f"GPU detection failed: {e}")
        return (False, None)


def _total_ram_gb() -> float | None:
    try:
        pages = os.sysconf("SC_PHYS_PAGES")
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return None
    if pages <= 0 or page_size <= 0:
        return None
    return round(pages * page_size / (1024**3), 1)


def _is_low_power_machine() -> bool:
    description = " ".join((platform.node(), platform.platform())).lower()
    return any(marker in description for marker in _LOW_POWER_MARKERS)


def classify(ram_gb: float | None, *, low_power: bool) -> DeviceTier:
    """Map raw capability facts onto a tier."""
    if ram_gb is not None and ram_gb < 8:
        return "blocked"
    if low_power or (ram_gb is not None and ram_gb < 16):
        return "lite"
    # Unknown RAM is treated as capable.
    return "full"


def detect_device() -> DeviceProfile:
    """Probe the current machine once."""
    has_gpu, gpu_type = _check_gpu_availability()
    ram_gb = _total_ram_gb()
    low_power = _is_low_power_machine()
    profile = DeviceProfile(
        tier=classify(ram_gb, low_power=low_power),
        ram_gb=ram_gb,
        has_gpu=has_gpu,
        gpu_type=gpu_type,
        low_power=low_power,
    )
    LOGGER.info(
        "Device tier: %s | RAM: %s GB | GPU: %s",
        profile.tier,
        profile.ram_gb if profile.ram_gb is not None else "unknown",
        profile.gpu_type or "none",
    )
    return profile
