"""
Liveness decision engine: active gesture challenges fused with passive
anti-spoofing signals into one accept/reject verdict.
"""
__version__ = "0.1.0"
