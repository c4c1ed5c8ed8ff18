"""ChartPulse test suite."""
