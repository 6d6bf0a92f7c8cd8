"""Stream ECG/PPG readings from a BLE sensor bridge."""

__version__ = "0.1.0"
