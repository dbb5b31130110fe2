"""
Helpers built on open ports: threaded I/O, streams and the pty bridge
"""
