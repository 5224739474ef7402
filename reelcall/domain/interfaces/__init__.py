"""Domain Interfaces (Ports):

Defines the contracts (Abstract Base Classes and Protocols) that infrastructure
components must implement. Core application logic depends on these interfaces,
not concrete implementations.
"""
