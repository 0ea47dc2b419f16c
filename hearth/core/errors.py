class HearthError(RuntimeError):
    """Base class for fatal provisioning failures."""


class ResolutionError(HearthError):
    """Raised when cluster configuration, node identity or credentials cannot be fetched."""


class InstallerFailure(HearthError):
    """Raised when one or more prepare-phase installer jobs failed."""

    def __init__(self, failed_jobs):
        self.failed_jobs = list(failed_jobs)
        super().__init__(f"Installer jobs failed: {', '.join(self.failed_jobs)}")


class SequencingError(HearthError):
    """Raised when a service is started or reconfigured out of order."""


class PhaseTransitionError(HearthError):
    """Raised when a phase write would skip or regress a phase."""


class ActivationError(HearthError):
    """Raised when an activate-phase step fails."""


class StateStoreError(HearthError):
    """Raised when the persisted state file cannot be read or holds an unknown phase."""


class DuplicateJobError(HearthError):
    """Raised when two installer jobs share a name."""
