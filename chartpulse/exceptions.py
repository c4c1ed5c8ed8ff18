"""
ChartPulse - Exception Hierarchy

Lower layers return explicit outcomes across component boundaries;
these exceptions are raised inside a component and converted there,
except ConfigurationError and CropBoundsError which are fatal.
"""


class ChartPulseError(Exception):
    """Base class for all ChartPulse errors."""


class ConfigurationError(ChartPulseError):
    """Missing credential or invalid user-supplied configuration."""


class CaptureError(ChartPulseError):
    """A browser session failed to render or screenshot a chart."""

    def __init__(self, timeframe: str, message: str):
        super().__init__(f"{timeframe}: {message}")
        self.timeframe = timeframe


class CropBoundsError(ChartPulseError):
    """Crop rectangle lies entirely outside the image."""


class ParseError(ChartPulseError):
    """Model response did not contain a valid JSON object for the expected schema."""


class PipelineError(ChartPulseError):
    """A vision pipeline stage failed and the cycle's analysis is aborted."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class FatalStepError(ChartPulseError):
    """An isolated step process exited on a fatal error; retrying cannot help."""


# Configuration faults stop the scheduler immediately instead of being retried.
FATAL_ERRORS: tuple[type[ChartPulseError], ...] = (
    ConfigurationError,
    CropBoundsError,
    FatalStepError,
)

# Process exit status for FATAL_ERRORS, distinct from an ordinary failure (1).
EXIT_FATAL = 2
