"""
WSN Deployment - Disaster-Response Sensor Deployment Simulator

A multi-agent simulation in which a base station partitions a target
area into location areas, mobile robots disperse sensors grid by grid,
and sensors obey activation/collection commands.
"""

__version__ = "1.0.0"
