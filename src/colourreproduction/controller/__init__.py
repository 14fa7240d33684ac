"""
The CONTROLLER layer runs matching sessions. It owns the targets, calls the
measurement device and grows the shade bank; the geometry it delegates to the
ANALYSIS layer.
"""
