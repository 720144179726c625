"""Schema package exports."""

from .credits import CreditAccount, LedgerEntry
from .jobs import Artifact, HeroImage, Job, JobProgress, SectionImage
from .notifications import InAppNotification

__all__ = ["Artifact", "CreditAccount", "HeroImage", "InAppNotification", "Job", "JobProgress", "LedgerEntry", "SectionImage"]
