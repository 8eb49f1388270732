"""Exception types raised by PulseCore components."""


class PulseCoreError(Exception):
    """Base class for all PulseCore errors."""


class ProbeError(PulseCoreError):
    """The external latency probe could not produce a result."""


class ProbeTimeoutError(ProbeError):
    """The probe process ran past its deadline and was killed."""


class ProbeCancelledError(ProbeError):
    """The caller cancelled the probe; partial output was discarded."""


class StorageError(PulseCoreError):
    """The history database failed an operation."""
