"""
Orientation — Sensor Fusion

Provides:
- SensorFusionEngine: raw accelerometer/magnetometer (or rotation vector)
  samples -> moving-average, circularly averaged azimuth/pitch/roll, published
  only when an axis moves by more than its configured minimum delta
- Raw sensor sources for development and tests:
    - RawCSVSource: replay from CSV (ts, dt, ax, ay, az, mx, my, mz)
    - RawSyntheticSource: procedural device turning in place
    - IteratorSensorProvider: pushes any sample iterable to a subscriber thread

Usage examples:
    from orientation.fusion import SensorFusionEngine
    from orientation.sources import IteratorSensorProvider, RawSyntheticSource
"""
