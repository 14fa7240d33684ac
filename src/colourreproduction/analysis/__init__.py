"""
The ANALYSIS layer holds the geometric engine: tessellation, point location,
the enclosing-simplex search, barycentric interpolation and the adaptive
refinement rule. It is pure NumPy/SciPy/Numba and never performs I/O.
"""
