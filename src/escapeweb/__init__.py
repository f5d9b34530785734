"""escapeweb -- Web front end for the escape_excel spreadsheet filter.

Accepts an uploaded spreadsheet export, pipes its bytes through an
external text-processing program and streams the program's output back
to the browser as a downloadable file.
"""

__version__ = "0.1.0"
