"""Built-in runtime profiles for segmentation dispatch."""

from __future__ import annotations

from dataclasses import dataclass

from echoafc.config.schema import PipelineConfig


@dataclass(frozen=True, slots=True)
class ProfileSpec:
    """Dispatch defaults for a named runtime profile."""

    name: str
    description: str
    max_workers: int
    task_timeout_s: float
    sampling_rate_hz: float


_PROFILES: dict[str, ProfileSpec] = {
    "fast": ProfileSpec(
        name="fast",
        description="Sparse sampling and short timeouts for quick previews.",
        max_workers=8,
        task_timeout_s=5.0,
        sampling_rate_hz=15.0,
    ),
    "balanced": ProfileSpec(
        name="balanced",
        description="Full-rate sampling with a moderate worker pool.",
        max_workers=4,
        task_timeout_s=10.0,
        sampling_rate_hz=30.0,
    ),
    "thorough": ProfileSpec(
        name="thorough",
        description="Full-rate sampling with generous timeouts for slow backends.",
        max_workers=2,
        task_timeout_s=60.0,
        sampling_rate_hz=30.0,
    ),
}


def available_profiles() -> dict[str, ProfileSpec]:
    """Return built-in profiles by name."""

    return dict(_PROFILES)


def resolve_profile(name: str) -> ProfileSpec:
    key = name.strip().lower()
    profile = _PROFILES.get(key)
    if profile is None:
        known = ", ".join(sorted(_PROFILES))
        raise ValueError(f"Unknown profile '{name}'. Available profiles: {known}")
    return profile


def apply_profile(config: PipelineConfig, profile_name: str) -> ProfileSpec:
    """Apply a profile directly onto a PipelineConfig instance."""

    profile = resolve_profile(profile_name)
    config.segmentation.max_workers = profile.max_workers
    config.segmentation.task_timeout_s = profile.task_timeout_s
    config.extraction.sampling_rate_hz = profile.sampling_rate_hz
    return profile
