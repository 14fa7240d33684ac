"""
The MODEL layer contains pure data structures and their persistence.
It has NO knowledge of measurement devices or of the geometry engine.
It deals with the shade bank, the per-target matching state and I/O.
"""
