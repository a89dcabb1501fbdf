from domain.models import (
    UNSET,
    Project,
    Sample,
    SamplePhase,
    SampleType,
    Site,
)

__all__ = [
    "UNSET",
    "Project",
    "Sample",
    "SamplePhase",
    "SampleType",
    "Site",
]
