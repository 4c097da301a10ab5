"""
ParkFlow - Real-Time Parking Occupancy Backend
"""

__version__ = "1.0.0"
