"""
Client-side screening pipeline: upload orchestration, session state and
result rendering on top of the model and preprocessing packages.
"""
