"""
TouchKio - kiosk hardware monitor and Home Assistant bridge

This is the root package for TouchKio. It probes which physical controls a
kiosk host exposes, watches them for changes, and mirrors them onto MQTT
discovery topics so a Home Assistant dashboard can observe and drive them.

Core modules:
- executor: External command execution (sync, async, streaming, scripts)
- probe: One-shot capability detection (sysfs, desktop commands, sudo)
- dbus: Signal bus property monitor for the on-screen keyboard
- poller: One-second sysfs change detection
- hardware: Display, brightness, audio, keyboard and system controls
- integration: MQTT discovery bridge and command dispatch
- window: Kiosk window status state machine
- kiosk: Chromium DevTools adapter for the kiosk view
"""

__version__ = "1.4.0"
