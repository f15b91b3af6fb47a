"""
RepForm - adaptive calibration and real-time form scoring for
push-ups, sit-ups and pull-ups.
"""

__version__ = "1.0.0"
