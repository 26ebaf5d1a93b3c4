"""vIBC XBridge command scripts"""

__version__ = '0.1.0'
