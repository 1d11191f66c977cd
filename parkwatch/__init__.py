"""Parking-lot camera server: H.264 RTSP/RTP streaming, resident registration and plate extraction."""

__version__ = "0.1.0"