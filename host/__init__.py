"""
Static artifact host: serves the page bundle and the exported model files
with permissive cross-origin headers.
"""
