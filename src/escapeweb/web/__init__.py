"""HTTP front end for escapeweb.

Serves the landing page and relays uploaded spreadsheets through the
external transformer, streaming its output back as a download.
"""
