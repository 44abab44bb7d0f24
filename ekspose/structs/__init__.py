"""
Data structures and type definitions shared by all layers of the controller.
"""
