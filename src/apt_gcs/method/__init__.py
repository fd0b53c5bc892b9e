"""APT method protocol: messages, wire I/O and the session runtime"""
