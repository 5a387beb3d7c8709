"""
LTI 1.3 integration via PyLTI1p3.

Launch validation, tool configuration, launch cache and the AGS grading
client the passback core submits through.
"""
