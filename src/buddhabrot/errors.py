"""Exception hierarchy for the render, merge and image stages.

Every error here is fatal: callers let it propagate to the top
level, where the process logs it and exits. Nothing is retried and nothing is
downgraded to a warning.

    BuddhabrotError
    ├── EngineConfigError (ValueError)    trial tiling, batch length, sizes
    ├── BundleFormatError (ValueError)    version byte, truncation, payload length
    ├── GeometryMismatchError (ValueError) merge inputs disagree on width/height
    ├── IterationMismatchError (ValueError) merge inputs disagree on max iterations
    └── DeviceError (RuntimeError)        adapter/device acquisition, dispatch
        └── DeviceTimeoutError            readback did not complete in time
"""


class BuddhabrotError(Exception):
    """Base class for all errors raised by src.buddhabrot."""


class EngineConfigError(BuddhabrotError, ValueError):
    """Invalid engine construction or call arguments."""


class BundleFormatError(BuddhabrotError, ValueError):
    """A bundle file does not follow the version 1 layout."""


class GeometryMismatchError(BuddhabrotError, ValueError):
    """Bundles with different width or height were given to one merge."""


class IterationMismatchError(BuddhabrotError, ValueError):
    """Bundles rendered with different iteration caps were given to one merge."""


class DeviceError(BuddhabrotError, RuntimeError):
    """The compute device could not be acquired or failed a dispatch."""


class DeviceTimeoutError(DeviceError):
    """The device did not finish a readback within the allowed time."""
