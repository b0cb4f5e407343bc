"""
Market settlement driver and YAML configuration.
"""
