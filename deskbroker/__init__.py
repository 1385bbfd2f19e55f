"""
Desktop Session Broker.

Provisions short-lived, isolated graphical desktop sessions reachable over
the network as a remote desktop:
- Allocates a display number and two TCP ports per session
- Launches a virtual display, window manager, framebuffer exporter,
  websocket bridge and a single application per session
- Resizes a running session's display on demand (cvt + xrandr)
- Tears every process and the session working directory down when the
  session ends, whatever the trigger
"""

__version__ = "1.0.0"
