"""Shared constants for the PSU Monitor."""

# USB identifiers of the DP100 bench supply (HID interface)
DP100_VENDOR_ID = 0x2E3C
DP100_PRODUCT_ID = 0xAF01

# Polling cadence (seconds)
TELEMETRY_INTERVAL = 0.15   # Output voltage/current/mode
SETPOINT_INTERVAL = 2.0     # Voltage/current set + output enable

# Wait after an acknowledged write before trusting a readback
GRACE_DELAY = 0.1

# "Data changed" indicator stays lit this long after the last change
INDICATOR_CLEAR_DELAY = 0.05

# Telemetry samples kept for the chart (~150 s at the default cadence)
HISTORY_CAPACITY = 1000

# Device integer units per display unit (mV per V, mA per A)
UNITS_PER_DISPLAY = 1000

# Output mode codes reported in telemetry
OUTPUT_MODES = {
    0: "CC",
    1: "CV",
    2: "OFF",
    130: "UVP",
}
