"""
Timed assessment engine: proctored, time-boxed test attempts and grading.
"""
__version__ = "0.1.0"
