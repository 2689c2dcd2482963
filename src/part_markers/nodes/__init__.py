"""Pipeline nodes for part-marker recognition.

Each submodule holds the pure stage functions plus one node function that
takes and returns a PipelineState.
"""
