"""
HPS Operations Services Module.

Services:
    - TelemetryStore: append-only writer for the telemetry tables
    - ActivityRecorder: user activity, audit trail, system and security events
    - MonitoringService: dashboard and metrics reports
    - AuthService: username/password authentication
"""
