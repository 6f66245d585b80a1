"""
dtnsim: Game-Theoretic Custody Transfer in Delay-Tolerant Space Networks

A discrete-event simulator of opportunistic bundle relay between satellites,
relays and ground stations that only meet during transient contact windows.

Core concepts:
- Contacts are the only chance to move data
- Nodes store and carry bundles under a bounded buffer
- At each contact both nodes play a forwarding game: accept custody or not
- Defection is remembered: reputation shapes future contacts
- Delivery ratio and latency emerge from many local decisions

See DESIGN.md for how the pieces fit together.
"""

__version__ = "0.1.0"
