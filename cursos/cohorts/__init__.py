"""Classes (cohorts), class modules and enrollments."""

from .models import (
    COHORTS_TABLES_CQL,
    ClassModule,
    ClassStatus,
    Cohort,
    Enrollment,
    EnrollmentStatus,
    InstructionalMethod,
)
from .repository import CohortRepository, EnrollmentRepository


__all__ = [
    "COHORTS_TABLES_CQL",
    "ClassModule",
    "ClassStatus",
    "Cohort",
    "CohortRepository",
    "Enrollment",
    "EnrollmentRepository",
    "EnrollmentStatus",
    "InstructionalMethod",
]
