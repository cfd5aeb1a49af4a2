"""
Services invoked by pipeline stages.
"""
