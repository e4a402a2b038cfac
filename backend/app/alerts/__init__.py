"""
alerts — Zone-entry alerts and push broadcasts.

Sub-modules:
    channels/         — Push providers (simulation, FCM, disabled)
    alert_dispatcher  — Zone entry, multicast batching, topic broadcasts
    templates         — Localised (vi / en) push payloads
    models            — Delivery state machine and shared data structures
"""
